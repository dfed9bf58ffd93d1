from auth import create_access_token, create_reset_token
from conftest import register


def test_register_returns_token_and_fresh_profile(client):
    res = client.post("/auth/register", data={"name": "Alice", "email": "Alice@Example.com", "password": "secret1"})
    assert res.status_code == 200
    body = res.json()
    assert body["token_type"] == "bearer"
    user = body["user"]
    assert user["email"] == "alice@example.com"
    assert user["eco_points"] == 0
    assert user["rating"] == 0.0
    assert user["blocked_users"] == []
    assert "password" not in user


def test_register_rejects_duplicate_email(client):
    register(client, "Alice")
    res = client.post("/auth/register", data={"name": "Other", "email": "ALICE@example.com", "password": "secret1"})
    assert res.status_code == 400
    assert res.json()["detail"] == "An account with this email already exists. Please try logging in instead."


def test_register_rejects_short_password(client):
    res = client.post("/auth/register", data={"name": "Alice", "email": "a@example.com", "password": "123"})
    assert res.status_code == 400
    assert res.json()["detail"] == "Password must be at least 6 characters long"


def test_register_rejects_invalid_email(client):
    res = client.post("/auth/register", data={"name": "Alice", "email": "not-an-email", "password": "secret1"})
    assert res.status_code == 400
    assert res.json()["detail"] == "Please enter a valid email address"


def test_login_error_messages(client):
    register(client, "Alice")
    res = client.post("/auth/login", data={"username": "nobody@example.com", "password": "secret1"})
    assert res.status_code == 400
    assert "No account found" in res.json()["detail"]

    res = client.post("/auth/login", data={"username": "alice@example.com", "password": "wrong!!"})
    assert res.status_code == 400
    assert res.json()["detail"] == "Incorrect password. Please try again."


def test_login_and_me(client):
    register(client, "Alice")
    res = client.post("/auth/login", data={"username": "alice@example.com", "password": "secret1"})
    assert res.status_code == 200
    token = res.json()["access_token"]

    me = client.get("/users/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["name"] == "Alice"


def test_me_requires_valid_token(client):
    assert client.get("/users/me").status_code == 401
    res = client.get("/users/me", headers={"Authorization": "Bearer garbage"})
    assert res.status_code == 401
    assert res.headers["WWW-Authenticate"] == "Bearer"


def test_reset_token_is_not_a_session_token(client, alice):
    user = {"_id": alice["id"], "password": "x" * 20}
    token = create_reset_token(user)
    assert client.get("/users/me", headers={"Authorization": f"Bearer {token}"}).status_code == 401


def test_password_reset_flow(client, mongo, sent_emails):
    register(client, "Alice")
    res = client.post("/auth/reset-password", data={"email": "alice@example.com"})
    assert res.json() == {"ok": True}
    assert len(sent_emails) == 1
    assert sent_emails[0]["to"] == "alice@example.com"

    # unknown address answers the same and sends nothing
    res = client.post("/auth/reset-password", data={"email": "ghost@example.com"})
    assert res.json() == {"ok": True}
    assert len(sent_emails) == 1

    html = sent_emails[0]["html"]
    token = html.split("token=")[1].split('"')[0]
    res = client.post("/auth/reset-password/confirm", data={"token": token, "new_password": "newpass1"})
    assert res.status_code == 200

    assert client.post("/auth/login", data={"username": "alice@example.com", "password": "newpass1"}).status_code == 200
    assert client.post("/auth/login", data={"username": "alice@example.com", "password": "secret1"}).status_code == 400

    # single use: the hash changed
    res = client.post("/auth/reset-password/confirm", data={"token": token, "new_password": "another1"})
    assert res.status_code == 400


def test_password_reset_rejects_session_token(client, alice):
    token = create_access_token({"sub": alice["id"]})
    res = client.post("/auth/reset-password/confirm", data={"token": token, "new_password": "newpass1"})
    assert res.status_code == 400
