# tests/conftest.py
import os
import pytest

from models.base import Base, init_engine_and_session, dispose_engine


@pytest.fixture(scope="session", autouse=True)
def _set_env(tmp_path_factory):
    db_path = tmp_path_factory.mktemp("db") / "payments.sqlite3"
    os.environ["DATABASE_URL"] = f"sqlite:///{db_path}"
    os.environ.setdefault("APP_ENV", "test")
    os.environ.setdefault("METRICS_ENABLED", "1")
    os.environ.setdefault("AUTO_CREATE_SCHEMA", "1")
    os.environ["SITE_ID"] = "7"
    os.environ["PAYMENT_CURRENCY"] = "USD"
    os.environ["AMAZON_FPS_ACCESS_KEY"] = "AKIDTEST"
    os.environ["AMAZON_FPS_SECRET_KEY"] = "test-secret"
    os.environ["AMAZON_FPS_MODE"] = "sandbox"
    for key in ("AMAZON_FPS_RETURN_URL", "AMAZON_FPS_CANCEL_URL"):
        os.environ.pop(key, None)
    dispose_engine()
    yield
    dispose_engine()


@pytest.fixture(scope="session")
def db_engine(_set_env):
    from models import schema  # noqa: F401
    engine, _Session = init_engine_and_session()
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture(autouse=True)
def _db_clean(db_engine):
    with db_engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    yield


@pytest.fixture(scope="session")
def app(db_engine):
    from app import create_app
    return create_app({"TESTING": True, "WTF_CSRF_ENABLED": False})


@pytest.fixture()
def client(app):
    return app.test_client()
