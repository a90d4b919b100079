from datetime import datetime
from pathlib import Path
import sys

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import sessionmaker

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from demand_import import main, models


@pytest.fixture()
def engine(tmp_path):
    db_path = tmp_path / "test.db"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def register_now(dbapi_conn, _):
        dbapi_conn.create_function("NOW", 0, lambda: datetime.utcnow().isoformat(sep=" "))

    models.Base.metadata.create_all(engine)
    seed_master_data(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def db_session(engine):
    SessionTesting = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    db = SessionTesting()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def client_and_engine(engine):
    SessionTesting = sessionmaker(bind=engine, autoflush=False, autocommit=False)

    def override_get_db():
        db = SessionTesting()
        try:
            yield db
        finally:
            db.close()

    original_startup = list(main.app.router.on_startup)
    original_shutdown = list(main.app.router.on_shutdown)
    original_lifespan = main.app.router.lifespan_context

    async def _noop_lifespan(_app):
        yield

    main.app.router.on_startup = []
    main.app.router.on_shutdown = []
    main.app.router.lifespan_context = _noop_lifespan
    main.app.dependency_overrides[main.get_db] = override_get_db

    client = TestClient(main.app)
    try:
        yield client, engine
    finally:
        client.close()
        main.app.dependency_overrides.clear()
        main.app.router.on_startup = original_startup
        main.app.router.on_shutdown = original_shutdown
        main.app.router.lifespan_context = original_lifespan


def seed_master_data(engine):
    with engine.begin() as conn:
        conn.execute(text("INSERT INTO brands (id, name) VALUES (1, 'Acme'), (2, 'Globex')"))
        conn.execute(
            text(
                """
                INSERT INTO skus (id, sku, name, brand_id)
                VALUES
                  (1, 'SKU-001', 'Widget', 1),
                  (2, 'SKU-002', 'Gadget', 1),
                  (3, '12345', 'Numeric Code Item', 2)
                """
            )
        )
        conn.execute(
            text(
                """
                INSERT INTO retailers (id, name)
                VALUES (1, 'Walmart'), (2, 'Target'), (3, 'Costco')
                """
            )
        )
