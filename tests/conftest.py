"""pytest fixtures for img2img backend tests.

Provides:
- utc_timezone: Autouse fixture enforcing UTC timezone
- engine: Function-scoped SQLite database (file in tmp_path) migrated to head
- session: Function-scoped database session
- uow_factory: Function-scoped UnitOfWork factory
- storage: Local blob store rooted in tmp_path
- FakePredictionClient: Scripted stand-in for the Replicate client
- FlakyStorage: Local blob store with one injected upload failure
"""

import asyncio
import os

# Settings validation is skipped in test environments; must be set before app import
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("API_KEYS", "alice:key-alice,bob:key-bob")

from pathlib import Path  # noqa: E402
from typing import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from alembic import command  # noqa: E402
from alembic.config import Config  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker  # noqa: E402

from img2img import models  # noqa: E402,F401
from img2img.core.database import create_db_engine  # noqa: E402
from img2img.services.exceptions import StorageUploadError  # noqa: E402
from img2img.services.image_generation.replicate_client import PredictionResult  # noqa: E402
from img2img.services.storage.local import LocalStorageProvider  # noqa: E402
from img2img.uow import create_uow_factory  # noqa: E402

PUBLIC_BASE_URL = "http://test/api/img2img/image"
ALEMBIC_DIR = Path(__file__).resolve().parent.parent / "alembic"


def alembic_config(db_url: str) -> Config:
    """Alembic config targeting db_url, without the ini file's logging setup."""
    cfg = Config()
    cfg.set_main_option("script_location", str(ALEMBIC_DIR))
    cfg.set_main_option("sqlalchemy.url", db_url)
    return cfg


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Provide a fresh SQLite database per test with the schema built by Alembic migrations."""
    db_url = f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"

    # env.py drives the async engine with asyncio.run, which cannot nest in the test loop
    await asyncio.to_thread(command.upgrade, alembic_config(db_url), "head")

    db_engine = create_db_engine(db_url)

    yield db_engine

    await db_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide function-scoped database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def uow_factory(session_factory):
    """Provide function-scoped UnitOfWork factory.

    Returns a callable that creates UoW instances, each with its own session.
    """
    return create_uow_factory(session_factory)


@pytest.fixture
def storage(tmp_path) -> LocalStorageProvider:
    """Provide blob store writing under tmp_path."""
    return LocalStorageProvider(tmp_path / "storage", PUBLIC_BASE_URL)


class FakePredictionClient:
    """Prediction client returning scripted outcomes, one per submit_prediction call.

    Outcomes:
        PredictionResult: returned as-is
        Exception instance: raised
        "hang": sleeps far beyond any test timeout

    download_errors lists, per download_output call, an exception to raise
    or None to return image_data.
    """

    def __init__(
        self, outcomes, image_data: bytes = b"\xff\xd8generated", download_errors=None
    ):
        self.outcomes = list(outcomes)
        self.download_errors = list(download_errors or [])
        self.image_data = image_data
        self.calls: list[dict] = []
        self.downloads: list[str] = []

    async def submit_prediction(self, config, image_url, prompt, output_format="jpg"):
        self.calls.append(
            {
                "config": config,
                "image_url": image_url,
                "prompt": prompt,
                "output_format": output_format,
            }
        )
        outcome = self.outcomes.pop(0)
        if outcome == "hang":
            await asyncio.sleep(3600)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def download_output(self, url: str) -> bytes:
        self.downloads.append(url)
        if self.download_errors:
            error = self.download_errors.pop(0)
            if error is not None:
                raise error
        return self.image_data


class FlakyStorage(LocalStorageProvider):
    """Local storage that fails one upload into fail_folder after succeed_first successes."""

    def __init__(self, root, public_base_url, fail_folder: str, succeed_first: int = 0):
        super().__init__(root, public_base_url)
        self.fail_folder = fail_folder
        self.succeed_first = succeed_first
        self.failures = 0

    async def upload_file(self, data, filename, content_type, folder):
        if folder.startswith(self.fail_folder):
            if self.succeed_first > 0:
                self.succeed_first -= 1
            elif self.failures == 0:
                self.failures += 1
                raise StorageUploadError("disk full")
        return await super().upload_file(data, filename, content_type, folder)

    def stored_files(self) -> list[Path]:
        return sorted(p for p in self.root.rglob("*") if p.is_file())


def prediction(index: int = 0, predict_time: float | None = 1.5) -> PredictionResult:
    """Build a successful prediction result."""
    return PredictionResult(
        prediction_id=f"pred-{index}",
        image_url=f"https://replicate.delivery/out/{index}.jpg",
        predict_time=predict_time,
    )


async def create_task_with_inputs(
    uow_factory,
    storage,
    input_count: int = 1,
    model: str = "standard",
    num_outputs: int = 1,
    user_id: str | None = "alice",
):
    """Create a pending task with input_count stored source images."""
    from img2img.services.image_generation.model_configs import PROVIDER, get_model_config
    from img2img.services.image_generation.orchestrator import input_folder

    async with await uow_factory() as uow:
        task = await uow.tasks.create(
            prompt="turn it into a watercolor",
            model=model,
            aspect_ratio="1:1",
            num_outputs=num_outputs,
            provider=PROVIDER,
            model_id=get_model_config(model).model_id,
            user_id=user_id,
        )
        for sort_order in range(input_count):
            stored = await storage.upload_file(
                b"\x89PNGsource", f"source-{sort_order}.png", "image/png", input_folder(task.id)
            )
            await uow.task_inputs.add(
                task_id=task.id,
                storage_key=stored.key,
                file_name=f"source-{sort_order}.png",
                file_size=10,
                file_type="image/png",
                sort_order=sort_order,
            )
    return task
