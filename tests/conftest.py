import os

# 必须在 import warehouse 之前：不让测试碰到本地的 warehouse.db
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "test_secret")
os.environ.pop("ADMIN_USERNAME", None)
os.environ.pop("ADMIN_PASSWORD", None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import SQLModel, Session  # noqa: E402

from warehouse.db import get_session, make_engine  # noqa: E402
from warehouse.main import app  # noqa: E402
from warehouse.models import Location, Supplier, Tool, User, Worker  # noqa: E402
from warehouse.security import hash_password  # noqa: E402
from warehouse.services import stock  # noqa: E402


@pytest.fixture
def engine():
    # 每个用例一个干净的内存库
    engine = make_engine("sqlite://", poolclass=StaticPool)
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def client(engine):
    def override_get_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()


def _login(client, username: str, password: str) -> dict:
    r = client.post("/auth/login", data={"username": username, "password": password})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


@pytest.fixture
def make_user(engine):
    def _make(username: str, password: str = "pw", role: str = "worker", permissions=None) -> User:
        with Session(engine) as s:
            user = User(
                username=username,
                password_hash=hash_password(password),
                role=role,
                permissions=permissions or {},
            )
            s.add(user)
            s.commit()
            s.refresh(user)
            return user

    return _make


@pytest.fixture
def admin_headers(client, make_user):
    make_user("admin", "admin_pw", role="admin")
    return _login(client, "admin", "admin_pw")


@pytest.fixture
def worker_headers(client, make_user):
    make_user("clerk", "clerk_pw", role="worker")
    return _login(client, "clerk", "clerk_pw")


@pytest.fixture
def login(client):
    return lambda username, password: _login(client, username, password)


@pytest.fixture
def make_product(engine):
    def _make(name: str, quantity: int = 0, unit: str = "шт", sku=None) -> int:
        with Session(engine) as s:
            return stock.create_product(s, name, unit=unit, sku=sku, quantity=quantity).id

    return _make


@pytest.fixture
def make_worker(engine):
    def _make(full_name: str = "Иван Петров", deleted: bool = False) -> int:
        with Session(engine) as s:
            w = Worker(full_name=full_name, deleted=deleted)
            s.add(w)
            s.commit()
            return w.id

    return _make


@pytest.fixture
def make_supplier(engine):
    def _make(name: str = "ООО Снаб", deleted: bool = False) -> int:
        with Session(engine) as s:
            row = Supplier(name=name, deleted=deleted)
            s.add(row)
            s.commit()
            return row.id

    return _make


@pytest.fixture
def make_location(engine):
    def _make(name: str = "Объект 1", city: str = "Москва", deleted: bool = False) -> int:
        with Session(engine) as s:
            row = Location(name=name, city=city, deleted=deleted)
            s.add(row)
            s.commit()
            return row.id

    return _make


@pytest.fixture
def make_tool(engine):
    def _make(name: str = "Перфоратор", total: int = 5) -> int:
        with Session(engine) as s:
            t = Tool(name=name, total_quantity=total, available_quantity=total)
            s.add(t)
            s.commit()
            return t.id

    return _make
