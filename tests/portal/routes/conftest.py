import pytest
from fastapi.testclient import TestClient

from portal.database import get_db
from portal.main import app


@pytest.fixture
def client(session_factory, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr('portal.routes.availability_routes.ensure_database_ready', lambda: None)
    monkeypatch.setattr('portal.routes.appointment_routes.ensure_database_ready', lambda: None)

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
