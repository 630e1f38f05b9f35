import os
import tempfile

# Окружение выставляется до импорта модулей приложения: они читают его при импорте.
_TMP_DIR = tempfile.mkdtemp(prefix="pizzeria-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'app.db')}"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["REDIS_HOST"] = ""
os.environ["GEMINI_API_KEY"] = ""
os.environ["DELIVERY_FEE"] = "3.00"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import database
import models


@pytest.fixture
def db_engine(tmp_path):
    url = f"sqlite:///{tmp_path / 'orders.db'}"
    engine = create_engine(url, **database.engine_options(url))
    models.Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(session_factory):
    import main

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    main.app.dependency_overrides[database.get_db] = override_get_db
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture
def order_payload():
    return {
        "orderId": "order-1",
        "total": 93.0,
        "details": {
            "name": "Ana",
            "phone": "27999999999",
            "orderType": "delivery",
            "neighborhood": "Centro",
            "street": "Rua Porfilio Furtado",
            "number": 178,
            "paymentMethod": "cash",
            "changeNeeded": True,
            "changeAmount": "100",
            "deliveryFee": 3,
        },
        "cart": [
            {"productId": "p1", "name": "Margherita", "size": "M", "price": 45.0, "quantity": 2},
        ],
    }


@pytest.fixture
def reservation_payload():
    return {
        "details": {
            "name": "Bruno",
            "phone": "27988887777",
            "reservationDate": "2025-11-20",
            "reservationTime": "20:30",
            "numberOfPeople": 4,
            "notes": "window table",
        }
    }
