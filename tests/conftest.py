import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import create_document
from main import create_app
from schemas import Product, User

PASSWORD = "correct-horse-battery"


@pytest.fixture
def settings():
    return Settings(
        jwt_secret="test-access-secret",
        jwt_refresh_secret="test-refresh-secret",
        bcrypt_rounds=4,
    )


@pytest.fixture
def db():
    return mongomock.MongoClient()["storefront_test"]


@pytest.fixture
def app(settings, db):
    return create_app(settings, database=db)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_user(app, db):
    def _make(email="victor@store.com", role="user", first_name="Victor", last_name="Radelytskyi", password=PASSWORD):
        user = User(
            email=email,
            first_name=first_name,
            last_name=last_name,
            password_hash=app.state.pwd_context.hash(password),
            role=role,
        )
        return create_document(db, "user", user)

    return _make


@pytest.fixture
def login(client):
    def _login(email, password=PASSWORD):
        resp = client.post("/api/users/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        return resp.json()

    return _login


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_id(make_user):
    return make_user()


@pytest.fixture
def admin_id(make_user):
    return make_user(email="admin@store.com", role="admin", first_name="Admin", last_name="Admin")


@pytest.fixture
def user_headers(user_id, login):
    return bearer(login("victor@store.com")["accessToken"])


@pytest.fixture
def admin_headers(admin_id, login):
    return bearer(login("admin@store.com")["accessToken"])


@pytest.fixture
def make_product(db):
    def _make(name="Fjallraven Backpack", price=9.99, available=3, category="bags", description="Fits 15 inch laptops"):
        product = Product(name=name, description=description, price=price, available=available, category=category)
        return create_document(db, "product", product)

    return _make
