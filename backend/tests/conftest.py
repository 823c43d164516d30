import pytest
from fastapi.testclient import TestClient

import backend.config as config
import backend.face_model as face_model
import backend.main as main
import backend.routers.admin as admin
import database.db as db
import face_training.trainer as trainer
from backend.camera import CameraConfig, CameraManager
from backend.services.session import AttendanceSession, get_attendance_session
from backend.services.training import reset_training_status
from fakes import FakeCameraProvider, FakeModel


@pytest.fixture()
def fake_provider():
    return FakeCameraProvider()


@pytest.fixture()
def make_session(fake_provider):
    sessions: list[AttendanceSession] = []

    def _make(model=None, provider=None, **kwargs):
        kwargs.setdefault("interval_seconds", 0.01)
        kwargs.setdefault("warmup_seconds", 0.0)
        session = AttendanceSession(
            model_provider=lambda: model,
            camera=CameraManager(provider or fake_provider, CameraConfig(index=0, width=None, height=None)),
            **kwargs,
        )
        sessions.append(session)
        return session

    yield _make
    for s in sessions:
        s.dispose()


@pytest.fixture()
def workspace(tmp_path, monkeypatch):
    test_db = tmp_path / "rollcall_test.db"
    faces_dir = tmp_path / "faces"

    # Point DB and face images to temp locations for isolation.
    monkeypatch.setattr(config, "DB_PATH", test_db)
    monkeypatch.setattr(db, "DB_PATH", test_db)
    monkeypatch.setattr(config, "FACES_DIR", faces_dir)
    monkeypatch.setattr(trainer, "FACES_DIR", faces_dir)
    monkeypatch.setattr(admin, "FACES_DIR", faces_dir)
    monkeypatch.setattr(main, "FACES_DIR", faces_dir)

    db.create_tables()
    reset_training_status(message="")
    yield tmp_path
    reset_training_status(message="")


@pytest.fixture()
def fake_model(monkeypatch):
    model = FakeModel(faces=[])
    monkeypatch.setattr(face_model, "MODEL", model)
    return model


@pytest.fixture()
def api_session(fake_model):
    session = AttendanceSession(
        model_provider=lambda: fake_model,
        camera=CameraManager(FakeCameraProvider(), CameraConfig(index=0, width=None, height=None)),
        interval_seconds=0.01,
        warmup_seconds=0.0,
    )
    yield session
    session.dispose()


@pytest.fixture()
def client(workspace, api_session):
    main.app.dependency_overrides[get_attendance_session] = lambda: api_session
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()
