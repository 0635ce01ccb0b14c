from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from config import settings
from engine.job_queue import JobQueue
from main import app
from models.asset import SourceAsset
from models.export_job import ExportJob
from services.export_service import ExportService, get_export_service
from stubs import StubProbe, StubTranscoder


# --- Fixtures ---

@pytest.fixture(autouse=True)
def export_dir(tmp_path, monkeypatch) -> Path:
    """Send every export into a per-test temp directory."""
    path = tmp_path / "exports"
    monkeypatch.setattr(settings, "export_dir", path)
    monkeypatch.setattr(JobQueue, "_instance", None)
    return path


@pytest.fixture
def source_file(tmp_path) -> Path:
    path = tmp_path / "IMG_0042.mov"
    path.write_bytes(b"not really a movie")
    return path


@pytest.fixture
def asset(source_file) -> SourceAsset:
    return SourceAsset.from_path(source_file)


@pytest.fixture
def transcoder() -> StubTranscoder:
    return StubTranscoder()


@pytest_asyncio.fixture(scope="function")
async def queue(transcoder) -> AsyncGenerator[JobQueue, None]:
    q = JobQueue(transcoder, StubProbe(transcoder), progress_interval=0.005)
    yield q
    await q.stop_worker(wait_for_current=False)


@pytest.fixture
def make_job(asset, export_dir):
    """Build a queued job with its own destination folder."""
    def _make(preset: str, **kwargs) -> ExportJob:
        folder = export_dir / preset
        folder.mkdir(parents=True, exist_ok=True)
        return ExportJob(source=asset, preset=preset, destination=folder / asset.original_filename, **kwargs)
    return _make


@pytest.fixture
def service(queue) -> ExportService:
    return ExportService(queue)


# --- Client Setup ---
@pytest_asyncio.fixture(scope="function")
async def client(service) -> AsyncGenerator[AsyncClient, None]:
    app.dependency_overrides[get_export_service] = lambda: service
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
