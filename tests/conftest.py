import pytest
from fastapi.testclient import TestClient

from dermai.api import create_app
from dermai.config import Settings
from dermai.store import Store


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a throwaway database and upload directory."""
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'dermai.db'}",
        upload_dir=str(tmp_path / "uploads"),
        bcrypt_rounds=4,
    )


@pytest.fixture
def store(settings):
    store = Store(settings.database_url)
    store.init_schema()
    yield store
    store.close()


@pytest.fixture
def client(settings, store):
    with TestClient(create_app(settings, store=store)) as client:
        yield client
