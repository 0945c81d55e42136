from datetime import datetime, timedelta, timezone

from helpdesk.models import RefreshTokenModel

REGISTRATION = {
    "email": "New.Person@Example.com",
    "password": "Secret123!",
    "first_name": "New",
    "last_name": "Person",
    "username": "newperson",
}


def test_register_creates_end_user(client):
    r = client.post("/api/auth/register", json=REGISTRATION)
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["user"]["role"] == "end_user"
    assert body["user"]["email"] == "new.person@example.com"
    assert body["refresh_token"]
    assert body["token_type"] == "bearer"

    r = client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert r.status_code == 200
    assert r.json()["username"] == "newperson"


def test_register_duplicate_email_and_username(client):
    client.post("/api/auth/register", json=REGISTRATION)

    r = client.post("/api/auth/register", json={**REGISTRATION, "username": "someoneelse"})
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "email_in_use"

    r = client.post("/api/auth/register", json={**REGISTRATION, "email": "other@example.com"})
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "username_in_use"


def test_register_rejects_weak_password(client):
    for password in ("short1!", "alllowercase1!", "NoDigitsHere!", "NoSpecial123"):
        r = client.post("/api/auth/register", json={**REGISTRATION, "password": password})
        assert r.status_code == 422, password
        assert r.json()["error"]["code"] == "validation_error"


def test_login_with_username_and_email(client, create_user):
    user = create_user(role="agent", username="agentsmith", email="smith@example.com")

    r = client.post("/api/auth/login", json={"username_or_email": "agentsmith", "password": "Secret123!"})
    assert r.status_code == 200
    assert r.json()["user"]["id"] == user.id
    assert r.json()["user"]["last_login_at"] is not None

    r = client.post("/api/auth/login", json={"username_or_email": "smith@example.com", "password": "Secret123!"})
    assert r.status_code == 200


def test_login_failures(client, create_user):
    create_user(role="end_user", username="inactive", is_active=False)
    create_user(role="end_user", username="active")

    r = client.post("/api/auth/login", json={"username_or_email": "active", "password": "Wrong123!"})
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "invalid_credentials"

    r = client.post("/api/auth/login", json={"username_or_email": "nobody", "password": "Secret123!"})
    assert r.status_code == 401

    r = client.post("/api/auth/login", json={"username_or_email": "inactive", "password": "Secret123!"})
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "user_inactive"


def _login(client, username):
    r = client.post("/api/auth/login", json={"username_or_email": username, "password": "Secret123!"})
    assert r.status_code == 200
    return r.json()


def test_refresh_rotates_token(client, create_user):
    create_user(role="end_user", username="rotator")
    tokens = _login(client, "rotator")

    r = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert r.status_code == 200
    rotated = r.json()
    assert rotated["refresh_token"] != tokens["refresh_token"]

    r = client.get("/api/auth/me", headers={"Authorization": f"Bearer {rotated['access_token']}"})
    assert r.status_code == 200


def test_refresh_reuse_revokes_every_token(client, create_user, db_session):
    user = create_user(role="end_user", username="victim")
    first = _login(client, "victim")
    other_device = _login(client, "victim")

    rotated = client.post("/api/auth/refresh", json={"refresh_token": first["refresh_token"]}).json()

    # Replaying the old token looks like theft
    r = client.post("/api/auth/refresh", json={"refresh_token": first["refresh_token"]})
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "refresh_token_reused"

    for token in (rotated["refresh_token"], other_device["refresh_token"]):
        r = client.post("/api/auth/refresh", json={"refresh_token": token})
        assert r.status_code == 401

    active = db_session.query(RefreshTokenModel).filter(RefreshTokenModel.user_id == user.id, RefreshTokenModel.revoked_at.is_(None)).count()
    assert active == 0


def test_refresh_unknown_and_expired(client, create_user, db_session):
    create_user(role="end_user", username="expiring")
    tokens = _login(client, "expiring")

    r = client.post("/api/auth/refresh", json={"refresh_token": "not-a-token"})
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "invalid_refresh_token"

    stored = db_session.query(RefreshTokenModel).filter(RefreshTokenModel.token == tokens["refresh_token"]).one()
    stored.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
    db_session.commit()

    r = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "refresh_token_expired"


def test_active_refresh_tokens_are_capped(client, create_user, db_session):
    from helpdesk.auth import MAX_ACTIVE_REFRESH_TOKENS

    user = create_user(role="end_user", username="manydevices")
    for _ in range(MAX_ACTIVE_REFRESH_TOKENS + 2):
        _login(client, "manydevices")

    active = db_session.query(RefreshTokenModel).filter(RefreshTokenModel.user_id == user.id, RefreshTokenModel.revoked_at.is_(None)).count()
    assert active == MAX_ACTIVE_REFRESH_TOKENS


def test_logout_revokes_refresh_token(client, create_user):
    create_user(role="end_user", username="leaver")
    tokens = _login(client, "leaver")
    headers = {"Authorization": f"Bearer {tokens['access_token']}"}

    r = client.post("/api/auth/logout", json={"refresh_token": tokens["refresh_token"]}, headers=headers)
    assert r.status_code == 204

    r = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert r.status_code == 401

    # A second logout is harmless
    r = client.post("/api/auth/logout", json={"refresh_token": tokens["refresh_token"]}, headers=headers)
    assert r.status_code == 204


def test_deactivated_user_token_stops_working(client, auth_headers, db_session):
    headers, user = auth_headers(role="end_user")
    assert client.get("/api/auth/me", headers=headers).status_code == 200

    user.is_active = False
    db_session.commit()

    r = client.get("/api/auth/me", headers=headers)
    assert r.status_code == 401
