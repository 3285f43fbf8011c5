import importlib

import pytest

fastapi = pytest.importorskip("fastapi")
TestClient = pytest.importorskip("fastapi.testclient").TestClient

from intake.application.execution_monitor import MonitorPolicy  # noqa: E402
from intake.application.progress_registry import ProgressRegistry  # noqa: E402
from intake.infrastructure.storage.object_storage import LocalObjectStorage  # noqa: E402
from tests.backend.fakes import RecordingRelay, ScriptedEngine, running  # noqa: E402


class DummyPool:
    """Minimal pool stub to avoid real DB connections in integration tests."""

    def connection(self):
        raise RuntimeError("Connection should not be used in mocked integration tests")


@pytest.fixture
def app_modules(monkeypatch, tmp_path, memory_db):
    """
    Load the app with a fake pool, in-memory repositories and scripted engine.
    Monitor tasks are recorded instead of spawned.
    """
    app_module = importlib.import_module("intake.main")

    fake_pool = DummyPool()
    monkeypatch.setattr(app_module.db, "init_pool", lambda: None)
    monkeypatch.setattr(app_module.db, "close_pool", lambda: None)
    monkeypatch.setattr(app_module.db, "pool", fake_pool)
    monkeypatch.setattr(app_module.db, "get_pool", lambda: fake_pool)

    registry = ProgressRegistry()
    engine = ScriptedEngine([running()], execution_id="exec-1")
    relay = RecordingRelay()
    app_module.configure_services(
        app_module.app,
        registry=registry,
        storage=LocalObjectStorage(root=tmp_path, public_base_url="http://testserver/files"),
        engine_client=engine,
        relay=relay,
        policy=MonitorPolicy(poll_interval=0.01),
    )

    started = []
    monitor = app_module.app.state.monitor
    monkeypatch.setattr(monitor, "start", lambda job_id, execution_id: started.append((job_id, execution_id)))

    return {
        "app": app_module.app,
        "registry": registry,
        "engine": engine,
        "relay": relay,
        "monitor": monitor,
        "started": started,
        "db": memory_db,
        "root": tmp_path,
    }


@pytest.fixture
def client(app_modules):
    return TestClient(app_modules["app"])
