from urllib.parse import parse_qs, urlparse

from errors import ExternalServiceError
from services.google_oauth_service import GoogleProfile


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"ok": True}
    assert response.headers["X-Content-Type-Options"] == "nosniff"


def test_me_without_session(client):
    response = client.get("/api/me")
    assert response.status_code == 401
    assert response.json() == {"user": None}


def test_me_with_unknown_token(client):
    client.cookies.set("sid", "not-a-real-token")
    response = client.get("/api/me")
    assert response.status_code == 401
    assert response.json() == {"user": None}


def test_register_starts_session(client):
    response = client.post("/auth/local/register",
                           json={"email": "  Reader@Example.COM ", "password": "password123", "name": "Reader"})
    assert response.status_code == 201
    user = response.json()["user"]
    assert user["email"] == "reader@example.com"
    assert user["provider"] == "local"
    assert user["name"] == "Reader"
    assert "password_hash" not in user
    assert "HttpOnly" in response.headers["set-cookie"]

    me = client.get("/api/me")
    assert me.status_code == 200
    assert me.json()["user"]["id"] == user["id"]


def test_register_duplicate_email_any_case(make_client, register_user):
    register_user(make_client(), email="dup@example.com")
    response = make_client().post("/auth/local/register",
                                  json={"email": "DUP@Example.com ", "password": "password123"})
    assert response.status_code == 409
    assert response.json() == {"error": "An account with this email already exists"}


def test_register_requires_email_and_password(client):
    for body in ({}, {"email": "a@example.com"}, {"password": "password123"}, {"email": "", "password": "x" * 10}):
        response = client.post("/auth/local/register", json=body)
        assert response.status_code == 400
        assert response.json() == {"error": "Email and password are required"}


def test_register_short_password(client):
    response = client.post("/auth/local/register", json={"email": "a@example.com", "password": "short"})
    assert response.status_code == 400
    assert response.json() == {"error": "Password must be at least 8 characters"}
    assert client.get("/api/me").status_code == 401


def test_login(make_client, register_user):
    register_user(make_client(), email="login@example.com", password="password123")

    client = make_client()
    response = client.post("/auth/local/login", json={"email": "LOGIN@example.com", "password": "password123"})
    assert response.status_code == 200
    assert response.json()["user"]["email"] == "login@example.com"
    assert client.get("/api/me").status_code == 200


def test_login_failures_are_indistinguishable(make_client, register_user):
    register_user(make_client(), email="known@example.com", password="password123")

    wrong_password = make_client().post("/auth/local/login",
                                        json={"email": "known@example.com", "password": "wrong-password"})
    unknown_email = make_client().post("/auth/local/login",
                                       json={"email": "nobody@example.com", "password": "password123"})
    missing = make_client().post("/auth/local/login", json={})
    for response in (wrong_password, unknown_email, missing):
        assert response.status_code == 401
        assert response.json() == {"error": "Invalid credentials"}


def test_login_replaces_previous_session(make_client, client, register_user):
    register_user(client, email="rotate@example.com")
    first = client.cookies.get("sid")

    client.post("/auth/local/login", json={"email": "rotate@example.com", "password": "password123"})
    second = client.cookies.get("sid")
    assert second and second != first

    replay = make_client()
    replay.cookies.set("sid", first)
    assert replay.get("/api/me").status_code == 401


def test_logout(client, register_user):
    register_user(client)
    token = client.cookies.get("sid")

    response = client.post("/auth/logout")
    assert response.status_code == 200
    assert response.json() == {"ok": True}
    assert client.get("/api/me").status_code == 401

    # The old token stays dead even if replayed
    client.cookies.set("sid", token)
    assert client.get("/api/me").status_code == 401


def test_logout_without_session(client):
    response = client.post("/auth/logout")
    assert response.status_code == 200
    assert response.json() == {"ok": True}


# --- Google ---
def _start_google(client):
    response = client.get("/auth/google", follow_redirects=False)
    assert response.status_code == 302
    location = urlparse(response.headers["location"])
    return parse_qs(location.query)["state"][0], location


def test_google_redirect(client):
    state, location = _start_google(client)
    assert location.netloc == "accounts.google.com"
    assert client.cookies.get("oauth_state") == state


def test_google_callback_creates_user(client, google_client):
    state, _ = _start_google(client)
    response = client.get("/auth/google/callback", params={"code": "auth-code", "state": state},
                          follow_redirects=False)
    assert response.status_code == 302
    assert response.headers["location"] == "http://frontend.test/"
    assert google_client.codes == ["auth-code"]

    user = client.get("/api/me").json()["user"]
    assert user["provider"] == "google"
    assert user["email"] == "reader@gmail.com"
    assert user["name"] == "Google Reader"
    assert user["avatar_url"] == "https://example.com/avatar.png"


def test_google_callback_reuses_existing_user(make_client):
    ids = []
    for _ in range(2):
        client = make_client()
        state, _ = _start_google(client)
        client.get("/auth/google/callback", params={"code": "c", "state": state}, follow_redirects=False)
        ids.append(client.get("/api/me").json()["user"]["id"])
    assert ids[0] == ids[1]


def test_google_callback_state_mismatch(client, google_client):
    _start_google(client)
    response = client.get("/auth/google/callback", params={"code": "c", "state": "forged"},
                          follow_redirects=False)
    assert response.status_code == 302
    assert response.headers["location"] == "http://frontend.test/login?error=google"
    assert google_client.codes == []
    assert client.get("/api/me").status_code == 401


def test_google_callback_without_state_cookie(client, google_client):
    response = client.get("/auth/google/callback", params={"code": "c", "state": "s"},
                          follow_redirects=False)
    assert response.headers["location"] == "http://frontend.test/login?error=google"
    assert google_client.codes == []


def test_google_callback_provider_error(client, google_client):
    state, _ = _start_google(client)
    response = client.get("/auth/google/callback", params={"error": "access_denied", "state": state},
                          follow_redirects=False)
    assert response.headers["location"] == "http://frontend.test/login?error=google"


def test_google_callback_exchange_failure(client, google_client):
    google_client.error = ExternalServiceError("Google is unreachable")
    state, _ = _start_google(client)
    response = client.get("/auth/google/callback", params={"code": "c", "state": state},
                          follow_redirects=False)
    assert response.headers["location"] == "http://frontend.test/login?error=google"
    assert client.get("/api/me").status_code == 401


def test_google_disabled(client, test_settings):
    test_settings.google_client_id = None
    response = client.get("/auth/google", follow_redirects=False)
    assert response.status_code == 302
    assert response.headers["location"] == "http://frontend.test/login?error=google"


def test_local_login_never_creates_but_google_does(make_client, google_client):
    # Local login for an unknown address fails...
    local = make_client().post("/auth/local/login", json={"email": "new@gmail.com", "password": "password123"})
    assert local.status_code == 401

    # ...while the first Google sign-in for the same address creates an account.
    google_client.profile = GoogleProfile(id="555", email="new@gmail.com", name="New")
    client = make_client()
    state, _ = _start_google(client)
    client.get("/auth/google/callback", params={"code": "c", "state": state}, follow_redirects=False)
    assert client.get("/api/me").json()["user"]["email"] == "new@gmail.com"


def test_google_and_local_accounts_are_separate(make_client, register_user, google_client):
    local_user = register_user(make_client(), email="reader@gmail.com")

    client = make_client()
    state, _ = _start_google(client)
    client.get("/auth/google/callback", params={"code": "c", "state": state}, follow_redirects=False)
    google_user = client.get("/api/me").json()["user"]
    assert google_user["id"] != local_user["id"]
    assert google_user["provider"] == "google"
