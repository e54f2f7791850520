# tests/test_api.py
import io
from unittest.mock import patch

from fastapi.testclient import TestClient

from app.errors import StoreFailure
from app.main import app
from app.schemas import Role
from app.store import TransactionStore
from tests.conftest import TEST_PASSWORD, auth_headers

FOOD = {"type": "expense", "category": "Food", "amount": 400, "description": "Groceries", "date": "2025-01-16"}
SALARY = {"type": "income", "category": "Salary", "amount": 1000, "description": "January pay", "date": "2025-01-15"}


def test_read_root(client):
    """Test the root endpoint."""
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {"message": "Welcome to the Finance Tracker API"}

# --- auth ---

def test_register_and_login(client):
    payload = {"name": "Jane", "email": "jane@example.com", "password": "secret123"}
    response = client.post("/api/auth/register", json=payload)

    assert response.status_code == 201
    body = response.json()
    assert body["message"] == "User registered successfully"
    user_id = body["userId"]

    response = client.post("/api/auth/login", json={"email": "jane@example.com", "password": "secret123"})
    assert response.status_code == 200
    data = response.json()
    assert data["token"]
    assert data["user"] == {"id": user_id, "name": "Jane", "email": "jane@example.com", "role": "user"}

    response = client.get("/api/auth/protected", headers={"Authorization": f"Bearer {data['token']}"})
    assert response.json() == {"message": "Hello, Jane!"}

def test_register_duplicate_email(client, make_user):
    user = make_user()
    payload = {"name": "Again", "email": user.email, "password": "secret123"}

    response = client.post("/api/auth/register", json=payload)

    assert response.status_code == 400
    assert response.json()["detail"] == "User already exists"

def test_login_wrong_password(client, make_user):
    user = make_user()
    response = client.post("/api/auth/login", json={"email": user.email, "password": "wrong-password"})
    assert response.status_code == 401

def test_login_unknown_email(client):
    response = client.post("/api/auth/login", json={"email": "nobody@example.com", "password": TEST_PASSWORD})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid credentials"

def test_missing_token_is_rejected(client):
    response = client.get("/api/analytics")
    assert response.status_code == 401
    assert response.json() == {"message": "Not authorized"}
    assert response.headers["www-authenticate"] == "Bearer"

def test_invalid_token_is_rejected(client):
    response = client.get("/api/analytics", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401

def test_admin_only_role_gate(client, make_user):
    user = make_user()
    admin = make_user(role=Role.ADMIN)

    assert client.get("/api/auth/admin-only", headers=auth_headers(user)).status_code == 403
    response = client.get("/api/auth/admin-only", headers=auth_headers(admin))
    assert response.status_code == 200
    assert response.json() == {"message": "Welcome Admin!"}

# --- transactions ---

def test_transaction_crud(client, make_user):
    user = make_user()
    headers = auth_headers(user)

    response = client.post("/api/transactions", json=FOOD, headers=headers)
    assert response.status_code == 201
    created = response.json()
    assert created["userId"] == user.id
    assert created["amount"] == 400
    assert created["date"] == "2025-01-16"
    txn_id = created["id"]

    response = client.put(f"/api/transactions/{txn_id}", json={"amount": 450.5}, headers=headers)
    assert response.status_code == 200
    assert response.json()["amount"] == 450.5
    assert response.json()["category"] == "Food"

    response = client.get(f"/api/transactions/{txn_id}", headers=headers)
    assert response.status_code == 200

    response = client.delete(f"/api/transactions/{txn_id}", headers=headers)
    assert response.status_code == 204
    assert client.get(f"/api/transactions/{txn_id}", headers=headers).status_code == 404

def test_update_rejects_explicit_null(client, make_user):
    headers = auth_headers(make_user())
    txn_id = client.post("/api/transactions", json=FOOD, headers=headers).json()["id"]

    for field in ("amount", "type", "category", "date", "description"):
        response = client.put(f"/api/transactions/{txn_id}", json={field: None}, headers=headers)
        assert response.status_code == 422, field

    # The stored row is untouched
    row = client.get(f"/api/transactions/{txn_id}", headers=headers).json()
    assert row["amount"] == 400
    assert row["category"] == "Food"

def test_transaction_rejects_negative_amount(client, make_user):
    response = client.post("/api/transactions", json={**FOOD, "amount": -5}, headers=auth_headers(make_user()))
    assert response.status_code == 422

def test_list_transactions_is_scoped_to_owner(client, make_user):
    alice = make_user()
    bob = make_user()
    admin = make_user(role=Role.ADMIN)
    client.post("/api/transactions", json=FOOD, headers=auth_headers(alice))
    client.post("/api/transactions", json=SALARY, headers=auth_headers(bob))

    alice_rows = client.get("/api/transactions", headers=auth_headers(alice)).json()
    assert [row["userId"] for row in alice_rows] == [alice.id]

    all_rows = client.get("/api/transactions", headers=auth_headers(admin)).json()
    assert {row["userId"] for row in all_rows} == {alice.id, bob.id}

    incomes = client.get("/api/transactions?type=income", headers=auth_headers(admin)).json()
    assert [row["category"] for row in incomes] == ["Salary"]

def test_other_users_transaction_is_not_found(client, make_user):
    alice = make_user()
    bob = make_user()
    txn_id = client.post("/api/transactions", json=FOOD, headers=auth_headers(alice)).json()["id"]

    assert client.get(f"/api/transactions/{txn_id}", headers=auth_headers(bob)).status_code == 404
    assert client.delete(f"/api/transactions/{txn_id}", headers=auth_headers(bob)).status_code == 404

def test_read_only_role_cannot_write(client, make_user):
    viewer = make_user(role=Role.READ_ONLY)
    response = client.post("/api/transactions", json=FOOD, headers=auth_headers(viewer))

    assert response.status_code == 403
    assert response.json() == {"message": "Access denied"}
    assert client.get("/api/transactions", headers=auth_headers(viewer)).status_code == 200

# --- upload ---

def test_upload_csv_success(client, make_user):
    user = make_user()
    headers = auth_headers(user)
    csv_content = (
        "type,category,amount,description,date\n"
        "income,Salary,1000,January pay,2025-01-15\n"
        "expense,Food,400,Groceries,2025-01-16"
    )
    file_bytes = io.BytesIO(csv_content.encode('utf-8'))

    response = client.post(
        "/api/transactions/upload",
        files={"file": ("transactions.csv", file_bytes, "text/csv")},
        headers=headers,
    )

    assert response.status_code == 200
    assert "accepted and is being processed" in response.json()["message"]
    # TestClient runs the background import before returning
    rows = client.get("/api/transactions", headers=headers).json()
    assert sorted(row["category"] for row in rows) == ["Food", "Salary"]
    assert all(row["userId"] == user.id for row in rows)

def test_upload_invalid_file_type(client, make_user):
    file_bytes = io.BytesIO(b"not a csv")
    response = client.post(
        "/api/transactions/upload",
        files={"file": ("test.txt", file_bytes, "text/plain")},
        headers=auth_headers(make_user()),
    )

    assert response.status_code == 400
    assert "Invalid file type" in response.json()["detail"]

def test_upload_csv_missing_column(client, make_user):
    csv_content = "type,category,amount,date\nincome,Salary,1000,2025-01-15"
    file_bytes = io.BytesIO(csv_content.encode('utf-8'))

    response = client.post(
        "/api/transactions/upload",
        files={"file": ("malformed.csv", file_bytes, "text/csv")},
        headers=auth_headers(make_user()),
    )

    assert response.status_code == 400
    assert "missing required columns" in response.json()["detail"]

# --- analytics ---

def test_analytics_miss_then_hit(client, make_user, cache):
    user = make_user()
    headers = auth_headers(user)
    client.post("/api/transactions", json=SALARY, headers=headers)
    client.post("/api/transactions", json=FOOD, headers=headers)

    response = client.get("/api/analytics", headers=headers)

    assert response.status_code == 200
    expected = {"totalIncome": 1000, "totalExpense": 400, "netBalance": 600, "categoryBreakdown": {"Food": 400}}
    assert response.json() == expected
    assert cache.ttls[f"analytics:user:{user.id}"] == 900

    with patch.object(TransactionStore, "sum_amount") as sum_amount:
        cached = client.get("/api/analytics/dashboard", headers=headers)
        sum_amount.assert_not_called()
    assert cached.json() == expected

def test_analytics_is_stale_until_ttl(client, make_user):
    user = make_user()
    headers = auth_headers(user)
    client.post("/api/transactions", json=SALARY, headers=headers)
    first = client.get("/api/analytics", headers=headers).json()

    client.post("/api/transactions", json=FOOD, headers=headers)
    second = client.get("/api/analytics", headers=headers).json()

    assert second == first

def test_admin_analytics_aggregates_all_users(client, make_user, cache):
    alice = make_user()
    bob = make_user()
    admin = make_user(role=Role.ADMIN)
    client.post("/api/transactions", json=SALARY, headers=auth_headers(alice))
    client.post("/api/transactions", json=FOOD, headers=auth_headers(bob))

    response = client.get("/api/analytics", headers=auth_headers(admin))

    assert response.json() == {"totalIncome": 1000, "totalExpense": 400, "netBalance": 600, "categoryBreakdown": {"Food": 400}}
    assert "analytics:admin" in cache.data

def test_analytics_store_failure_is_server_error(client, make_user, cache):
    user = make_user()

    with patch.object(TransactionStore, "sum_amount", side_effect=StoreFailure("connection refused")):
        response = client.get("/api/analytics", headers=auth_headers(user))

    assert response.status_code == 500
    assert response.json() == {"message": "Server error"}
    assert cache.data == {}

def test_analytics_survives_cache_outage(client, make_user, cache):
    cache.fail_reads = True
    cache.fail_writes = True
    user = make_user()
    headers = auth_headers(user)
    client.post("/api/transactions", json=SALARY, headers=headers)

    response = client.get("/api/analytics", headers=headers)

    assert response.status_code == 200
    assert response.json()["totalIncome"] == 1000

def test_monthly_trends_endpoint(client, make_user):
    user = make_user()
    headers = auth_headers(user)
    client.post("/api/transactions", json=SALARY, headers=headers)
    client.post("/api/transactions", json=FOOD, headers=headers)

    response = client.get("/api/analytics/monthly-trends?period=year&year=2025", headers=headers)

    assert response.status_code == 200
    assert response.json() == {"trends": [{"month": "2025-01", "income": 1000.0, "expenses": 400.0, "net": 600.0}]}

def test_category_breakdown_endpoint(client, make_user):
    user = make_user()
    headers = auth_headers(user)
    client.post("/api/transactions", json=FOOD, headers=headers)

    response = client.get("/api/analytics/category-breakdown", headers=headers)

    assert response.status_code == 200
    assert response.json() == {"categories": [{"category": "Food", "type": "expense", "amount": 400.0, "percentage": 100.0}]}

def test_income_vs_expense_endpoint(client, make_user):
    user = make_user()
    headers = auth_headers(user)
    client.post("/api/transactions", json=SALARY, headers=headers)
    client.post("/api/transactions", json=FOOD, headers=headers)
    client.post("/api/transactions", json={**FOOD, "date": "2025-02-03"}, headers=headers)

    response = client.get("/api/analytics/income-vs-expense?period=month&year=2025&month=1", headers=headers)

    assert response.status_code == 200
    assert response.json() == {"comparison": [
        {"date": "2025-01-15", "income": 1000.0, "expenses": 0.0, "net": 1000.0},
        {"date": "2025-01-16", "income": 0.0, "expenses": 400.0, "net": -400.0},
    ]}

def test_period_filters_apply_to_breakdown_and_trends(client, make_user):
    user = make_user()
    headers = auth_headers(user)
    client.post("/api/transactions", json=FOOD, headers=headers)
    client.post("/api/transactions", json={**FOOD, "category": "Rent", "date": "2024-06-01"}, headers=headers)

    breakdown = client.get("/api/analytics/category-breakdown?year=2024", headers=headers).json()
    assert [c["category"] for c in breakdown["categories"]] == ["Rent"]

    trends = client.get("/api/analytics/monthly-trends?year=2024&month=6", headers=headers).json()
    assert [t["month"] for t in trends["trends"]] == ["2024-06"]

def test_invalid_period_filters_are_rejected(client, make_user):
    headers = auth_headers(make_user())

    assert client.get("/api/analytics/monthly-trends?month=13", headers=headers).status_code == 422
    assert client.get("/api/analytics/income-vs-expense?period=decade", headers=headers).status_code == 422

def test_unexpected_error_returns_server_error_body(client, make_user):
    headers = auth_headers(make_user())
    # The app re-raises after answering, so let the client return the response
    unchecked_client = TestClient(app, raise_server_exceptions=False)

    with patch.object(TransactionStore, "fetch_amounts", side_effect=RuntimeError("pandas blew up")):
        response = unchecked_client.get("/api/analytics/monthly-trends", headers=headers)

    assert response.status_code == 500
    assert response.json() == {"message": "Server error"}

def test_upload_rejects_blank_amount(client, make_user):
    headers = auth_headers(make_user())
    csv_content = "type,category,amount,description,date\nexpense,Food,,Groceries,2025-01-16"

    response = client.post(
        "/api/transactions/upload",
        files={"file": ("transactions.csv", io.BytesIO(csv_content.encode('utf-8')), "text/csv")},
        headers=headers,
    )

    assert response.status_code == 400
    assert "missing values" in response.json()["detail"]
    assert client.get("/api/transactions", headers=headers).json() == []
