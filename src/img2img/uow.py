"""Unit of Work pattern for the img2img backend.

Provides transaction management with automatic commit/rollback and access to all repositories.
"""

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from img2img.repositories.generation_attempt import GenerationAttemptRepository
from img2img.repositories.image_task import ImageTaskRepository
from img2img.repositories.image_task_input import ImageTaskInputRepository
from img2img.repositories.image_task_output import ImageTaskOutputRepository

logger = structlog.get_logger()


class UnitOfWork:
    """Unit of Work pattern implementation.

    Manages database transactions and provides access to all repositories.
    Use as async context manager for automatic commit/rollback.

    Example:
        async with await uow_factory() as uow:
            task = await uow.tasks.get_by_id(task_id)
            await uow.tasks.set_status(task, TaskStatus.PROCESSING)
            # Automatically commits on successful exit
            # Automatically rolls back on exception
    """

    def __init__(self, session: AsyncSession):
        """Initialize UnitOfWork with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

        self.tasks = ImageTaskRepository(session)
        self.task_inputs = ImageTaskInputRepository(session)
        self.task_outputs = ImageTaskOutputRepository(session)
        self.attempts = GenerationAttemptRepository(session)

    async def __aenter__(self):
        """Enter async context manager.

        Returns:
            self: UnitOfWork instance with all repositories available
        """
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Exit async context manager with automatic commit/rollback.

        Returns:
            False: Always re-raise exceptions after rollback
        """
        try:
            if exc_type is None:
                await self.session.commit()
                logger.debug("transaction.committed")
            else:
                await self.session.rollback()
                logger.debug("transaction.rolled_back", exc_type=exc_type.__name__)
        finally:
            await self.session.close()

        return False


def create_uow_factory(session_factory: async_sessionmaker[AsyncSession]):
    """Create a factory function that produces UnitOfWork instances.

    Args:
        session_factory: SQLAlchemy async session factory

    Returns:
        Callable that creates UnitOfWork instances from new sessions

    Example:
        uow_factory = create_uow_factory(setup_db_session(db_url))

        async with await uow_factory() as uow:
            await uow.tasks.create(...)
    """

    async def _create_uow():
        """Create a new UnitOfWork instance with a new session."""
        session = session_factory()
        return UnitOfWork(session)

    return _create_uow
