from jose import jwt

from warehouse.config import settings


def test_register_and_login(client):
    r = client.post("/auth/register", json={"username": "neil", "password": "neil456"})
    assert r.status_code in (200, 201)
    assert r.json() == {"ok": True}

    r2 = client.post("/auth/login", data={"username": "neil", "password": "neil456"})
    assert r2.status_code == 200
    data = r2.json()
    assert "access_token" in data
    assert data["token_type"] == "bearer"

    payload = jwt.decode(data["access_token"], settings.secret_key, algorithms=["HS256"])
    assert payload["sub"] == "neil"
    assert payload["role"] == "worker"


def test_register_duplicate_user(client):
    r1 = client.post("/auth/register", json={"username": "dup", "password": "p"})
    assert r1.status_code in (200, 201)

    r2 = client.post("/auth/register", json={"username": "dup", "password": "p"})
    assert r2.status_code == 409
    assert r2.json() == {
        "detail": {"code": "USERNAME_EXISTS", "message": "用户名已存在"}
    }


def test_login_invalid_credentials(client):
    r = client.post("/auth/login", data={"username": "nope", "password": "wrong"})
    assert r.status_code == 401
    assert r.json() == {
        "detail": {"code": "INVALID_CREDENTIALS", "message": "用户名或密码错误"}
    }


def test_me(client, worker_headers):
    r = client.get("/auth/me", headers=worker_headers)
    assert r.status_code == 200
    body = r.json()
    assert body["username"] == "clerk"
    assert body["role"] == "worker"
    assert body["permissions"] == {}


def test_missing_and_bad_token(client):
    r = client.get("/products")
    assert r.status_code == 401
    assert r.json()["detail"]["code"] == "NOT_AUTHENTICATED"

    r = client.get("/products", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401
    assert r.json()["detail"]["code"] == "INVALID_TOKEN"


def test_token_for_deleted_user(client):
    from warehouse.security import create_access_token

    token = create_access_token("ghost")
    r = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 401
    assert r.json()["detail"]["code"] == "USER_NOT_FOUND"


def test_health(client):
    assert client.get("/health").json() == {"ok": True}
