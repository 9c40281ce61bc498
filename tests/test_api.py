import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from config import Settings
from database import Base
from main import create_app


def make_settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        access_token_secret="access-secret",
        access_token_expiry_secs=3600,
        refresh_token_secret="refresh-secret",
        refresh_token_expiry_secs=7200,
        cors_origins=["http://testserver"],
        cookie_secure=False,
        bcrypt_rounds=4,
        log_level="WARNING",
    )


@pytest.fixture
def app(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'api.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return create_app(make_settings(), factory)


@pytest.fixture
def client(app):
    return TestClient(app)


def register_and_login(
    client: TestClient, email: str = "ada@example.com", password: str = "analytical"
) -> dict:
    resp = client.post(
        "/api/v1/users/register",
        json={"fullName": "Ada Lovelace", "email": email, "password": password},
    )
    assert resp.status_code == 201
    resp = client.post(
        "/api/v1/users/login", json={"email": email, "password": password}
    )
    assert resp.status_code == 200
    return resp.json()["data"]


def test_healthcheck(client: TestClient) -> None:
    resp = client.get("/api/v1/healthcheck")
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["data"] == {"status": "OK"}
    assert body["message"] == "Server is healthy and running."


def test_register_returns_envelope_without_secrets(client: TestClient) -> None:
    resp = client.post(
        "/api/v1/users/register",
        json={"fullName": "Ada", "email": "Ada@Example.com", "password": "pw"},
    )

    body = resp.json()
    assert resp.status_code == 201
    assert body["statusCode"] == 201
    assert body["success"] is True
    assert body["message"] == "User registered successfully"
    assert body["data"]["email"] == "ada@example.com"
    assert "password" not in str(body).lower()
    assert "refreshToken" not in body["data"]


def test_register_errors_use_error_envelope(client: TestClient) -> None:
    payload = {"fullName": "Ada", "email": "ada@example.com", "password": "pw"}
    client.post("/api/v1/users/register", json=payload)

    dup = client.post("/api/v1/users/register", json=payload)
    assert dup.status_code == 409
    assert dup.json() == {
        "statusCode": 409,
        "data": None,
        "message": "User with this email already exists",
        "success": False,
        "errors": [],
    }

    blank = client.post(
        "/api/v1/users/register",
        json={"fullName": " ", "email": "x@example.com", "password": "pw"},
    )
    assert blank.status_code == 400
    assert blank.json()["message"] == "All fields are required"


def test_login_failures(client: TestClient) -> None:
    register_and_login(client)

    missing = client.post(
        "/api/v1/users/login", json={"email": "nobody@example.com", "password": "x"}
    )
    assert missing.status_code == 404
    assert missing.json()["message"] == "User does not exist"

    wrong = client.post(
        "/api/v1/users/login", json={"email": "ada@example.com", "password": "x"}
    )
    assert wrong.status_code == 401
    assert wrong.json()["success"] is False


def test_login_sets_cookies_and_session_resolves(client: TestClient) -> None:
    data = register_and_login(client)

    assert client.cookies.get("accessToken") == data["accessToken"]
    assert client.cookies.get("refreshToken") == data["refreshToken"]
    me = client.get("/api/v1/users/me")
    assert me.status_code == 200
    assert me.json()["data"]["fullName"] == "Ada Lovelace"


def test_bearer_header_is_fallback_and_cookie_wins(app) -> None:
    cookie_client = TestClient(app)
    data = register_and_login(cookie_client)

    bearer_client = TestClient(app)
    ok = bearer_client.get(
        "/api/v1/users/me",
        headers={"Authorization": f"Bearer {data['accessToken']}"},
    )
    assert ok.status_code == 200

    bogus = cookie_client.get(
        "/api/v1/users/me", headers={"Authorization": "Bearer garbage"}
    )
    assert bogus.status_code == 200


def test_missing_or_bad_token_is_unauthorized(client: TestClient) -> None:
    resp = client.get("/api/v1/transactions")
    assert resp.status_code == 401
    assert resp.json()["message"] == "Unauthorized request: No token provided"

    resp = client.get(
        "/api/v1/transactions", headers={"Authorization": "Bearer garbage"}
    )
    assert resp.status_code == 401
    assert resp.json()["success"] is False


def test_logout_clears_cookies_and_is_idempotent(client: TestClient) -> None:
    data = register_and_login(client)

    first = client.post("/api/v1/users/logout")
    assert first.status_code == 200
    assert first.json()["data"] == {}
    assert client.cookies.get("accessToken") is None

    second = client.post(
        "/api/v1/users/logout",
        headers={"Authorization": f"Bearer {data['accessToken']}"},
    )
    assert second.status_code == 200

    refresh = client.post(
        "/api/v1/users/refresh-token", json={"refreshToken": data["refreshToken"]}
    )
    assert refresh.status_code == 401


def test_refresh_rotates_tokens(client: TestClient) -> None:
    data = register_and_login(client)

    rotated = client.post("/api/v1/users/refresh-token")
    assert rotated.status_code == 200
    new_refresh = rotated.json()["data"]["refreshToken"]
    assert new_refresh != data["refreshToken"]
    assert client.cookies.get("refreshToken") == new_refresh

    client.cookies.clear()
    reused = client.post(
        "/api/v1/users/refresh-token", json={"refreshToken": data["refreshToken"]}
    )
    assert reused.status_code == 401
    assert reused.json()["message"] == "Refresh token is expired or used"


def test_update_account_and_change_password(client: TestClient) -> None:
    register_and_login(client)

    updated = client.patch(
        "/api/v1/users/update-account",
        json={"fullName": "Countess Ada", "email": "countess@example.com"},
    )
    assert updated.status_code == 200
    assert updated.json()["data"]["email"] == "countess@example.com"

    bad = client.post(
        "/api/v1/users/change-password",
        json={"oldPassword": "wrong", "newPassword": "engine"},
    )
    assert bad.status_code == 401

    good = client.post(
        "/api/v1/users/change-password",
        json={"oldPassword": "analytical", "newPassword": "engine"},
    )
    assert good.status_code == 200

    relogin = client.post(
        "/api/v1/users/login",
        json={"email": "countess@example.com", "password": "engine"},
    )
    assert relogin.status_code == 200


def test_transaction_crud(client: TestClient) -> None:
    register_and_login(client)

    created = client.post(
        "/api/v1/transactions",
        json={
            "description": "Groceries",
            "amount": 42.5,
            "type": "expense",
            "category": "Food",
            "date": "2025-01-05T12:00:00",
        },
    )
    assert created.status_code == 201
    txn = created.json()["data"]
    assert txn["amount"] == 42.5
    assert txn["receiptUrl"] == ""

    fetched = client.get(f"/api/v1/transactions/{txn['id']}")
    assert fetched.status_code == 200
    for key in ("description", "amount", "type", "category", "date"):
        assert fetched.json()["data"][key] == txn[key]

    patched = client.patch(
        f"/api/v1/transactions/{txn['id']}", json={"amount": 40, "category": "Dining"}
    )
    assert patched.status_code == 200
    assert patched.json()["data"]["amount"] == 40.0
    assert patched.json()["data"]["description"] == "Groceries"

    listed = client.get("/api/v1/transactions", params={"type": "expense"})
    assert [t["id"] for t in listed.json()["data"]] == [txn["id"]]
    assert client.get("/api/v1/transactions", params={"type": "income"}).json()[
        "data"
    ] == []

    deleted = client.delete(f"/api/v1/transactions/{txn['id']}")
    assert deleted.status_code == 200
    assert deleted.json()["data"] == {"id": txn["id"]}
    assert client.get(f"/api/v1/transactions/{txn['id']}").status_code == 404


def test_transaction_validation(client: TestClient) -> None:
    register_and_login(client)

    zero = client.post(
        "/api/v1/transactions",
        json={"description": "Nothing", "amount": 0, "type": "expense", "category": "x"},
    )
    assert zero.status_code == 400
    assert zero.json()["success"] is False
    assert zero.json()["message"].startswith("amount")

    missing = client.post("/api/v1/transactions", json={"amount": 5})
    assert missing.status_code == 400

    assert client.get("/api/v1/transactions/not-a-number").status_code == 400
    soon = client.get("/api/v1/transactions", params={"period": "soon"})
    assert soon.status_code == 400

    huge = client.post(
        "/api/v1/transactions",
        json={
            "description": "Lottery",
            "amount": 100000000000000000000,
            "type": "income",
            "category": "Luck",
        },
    )
    assert huge.status_code == 400
    assert huge.json()["message"].startswith("amount")

    far_back = client.get("/api/v1/transactions", params={"period": "1000000d"})
    assert far_back.status_code == 400

    far_end = client.get(
        "/api/v1/transactions/reports",
        params={"startDate": "2025-01-01", "endDate": "9999-12-31"},
    )
    assert far_end.status_code == 400
    assert far_end.json()["success"] is False


def test_foreign_transaction_is_not_found(app) -> None:
    ada = TestClient(app)
    register_and_login(ada)
    txn = ada.post(
        "/api/v1/transactions",
        json={
            "description": "Rent",
            "amount": 800,
            "type": "expense",
            "category": "Home",
        },
    ).json()["data"]

    eve = TestClient(app)
    register_and_login(eve, email="eve@example.com")

    assert eve.get(f"/api/v1/transactions/{txn['id']}").status_code == 404
    assert eve.patch(
        f"/api/v1/transactions/{txn['id']}", json={"amount": 1}
    ).status_code == 404
    assert eve.delete(f"/api/v1/transactions/{txn['id']}").status_code == 404
    assert eve.get("/api/v1/transactions").json()["data"] == []
    assert ada.get(f"/api/v1/transactions/{txn['id']}").json()["data"]["amount"] == 800.0


def test_stats_breakdown_and_report(client: TestClient) -> None:
    register_and_login(client)
    for description, amount, type_, category, date in [
        ("Lunch", 100, "expense", "Food", "2025-01-10T12:00:00"),
        ("Dinner", 50, "expense", "Food", "2025-01-31T23:59:00"),
        ("Payday", 500, "income", "Salary", "2025-01-10T08:00:00"),
    ]:
        resp = client.post(
            "/api/v1/transactions",
            json={
                "description": description,
                "amount": amount,
                "type": type_,
                "category": category,
                "date": date,
            },
        )
        assert resp.status_code == 201

    stats = client.get("/api/v1/transactions/stats").json()["data"]
    assert stats == {"totalIncome": 500.0, "totalExpense": 150.0, "balance": 350.0}

    breakdown = client.get("/api/v1/transactions/summary/categories").json()["data"]
    assert breakdown == [{"category": "Food", "totalAmount": 150.0}]

    report = client.get(
        "/api/v1/transactions/reports",
        params={"startDate": "2025-01-01", "endDate": "2025-01-31"},
    )
    assert report.status_code == 200
    data = report.json()["data"]
    assert data["trend"] == [
        {"date": "2025-01-10", "income": 500.0, "expense": 100.0},
        {"date": "2025-01-31", "income": 0.0, "expense": 50.0},
    ]
    assert data["byCategory"] == [{"category": "Food", "amount": 150.0, "count": 2}]
    assert data["summary"]["totalTransactions"] == 3

    missing = client.get(
        "/api/v1/transactions/reports", params={"startDate": "2025-01-01"}
    )
    assert missing.status_code == 400
    assert missing.json()["message"] == "startDate and endDate are required"
