"""FastAPI dependencies for authentication and shared services.

This module provides reusable FastAPI dependencies for:
- Settings access
- API key authentication
- UnitOfWork factory, storage and orchestrator injection from app.state
"""

from typing import Annotated, Callable

from fastapi import Depends, Header, HTTPException, Request, status

from img2img.core.config import Settings
from img2img.services.auth import Identity, authenticate, parse_bearer_token
from img2img.services.exceptions import AuthenticationError
from img2img.services.image_generation.orchestrator import GenerationOrchestrator
from img2img.services.storage.base import StorageProvider


def get_settings() -> Settings:
    """Get application settings instance.

    Returns:
        Settings instance loaded from environment variables.
    """
    return Settings()  # type: ignore[call-arg]  # Pydantic loads from env vars


async def require_identity(
    authorization: Annotated[str | None, Header()] = None,
    settings: Settings = Depends(get_settings),
) -> Identity:
    """Authenticate the caller before any processing occurs.

    Raises:
        HTTPException: 401 Unauthorized if the API key is missing or invalid
    """
    try:
        return authenticate(parse_bearer_token(authorization), settings.api_key_map)
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_uow_factory(request: Request) -> Callable:
    """Get UnitOfWork factory from app state.

    Example:
        >>> @router.post("/endpoint")
        >>> async def endpoint(uow_factory=Depends(get_uow_factory)):
        ...     async with await uow_factory() as uow:
        ...         await uow.tasks.get_by_id(task_id)
    """
    return request.app.state.uow_factory


def get_storage(request: Request) -> StorageProvider:
    """Get blob store from app state."""
    return request.app.state.storage


def get_orchestrator(request: Request) -> GenerationOrchestrator:
    """Get generation orchestrator from app state."""
    return request.app.state.orchestrator
