from bson import ObjectId

from foodmarket.models import Role

from tests.conftest import PASSWORD, seed_commerce_type

JSON = {"Accept": "application/json"}


def _register_client(client, username="ana", role="client", **overrides):
    payload = {
        "first_name": "Ana",
        "last_name": "Perez",
        "phone": "809-555-0100",
        "email": f"{username}@Test.com",
        "username": username,
        "role": role,
        "password": PASSWORD,
        "password_confirm": PASSWORD,
        **overrides,
    }
    return client.post("/auth/register/client", json=payload)


class TestRegistration:
    def test_register_activate_login(self, client, run, app_db):
        resp = _register_client(client)
        assert resp.status_code == 200
        user = run(app_db.users.find_one, {"username": "ana"})
        assert user["is_active"] is False
        assert user["email"] == "ana@test.com"
        assert user["password_hash"] != PASSWORD

        resp = client.post("/auth/login", json={"identifier": "ana", "password": PASSWORD})
        assert resp.status_code == 401
        assert resp.json()["error"].startswith("Your account is inactive")

        assert client.get(f"/auth/activate/{user['activation_token']}").status_code == 200

        resp = client.post("/auth/login", json={"identifier": "ana@test.com", "password": PASSWORD})
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["role"] == "client"
        assert data["redirect"] == "/client/home"
        assert "session" in resp.cookies

    def test_courier_starts_available(self, client, run, app_db):
        assert _register_client(client, "leo", role="delivery").status_code == 200
        user = run(app_db.users.find_one, {"username": "leo"})
        assert user["role"] == "delivery"
        assert user["delivery_status"] == "available"

    def test_admin_role_cannot_self_register(self, client):
        resp = _register_client(client, "mallory", role="admin")
        assert resp.status_code == 400
        assert resp.json()["success"] is False

    def test_password_problems_listed(self, client):
        resp = _register_client(client, password="abc", password_confirm="xyz")
        assert resp.status_code == 400
        assert resp.json()["details"] == [
            "Password must be at least 6 characters long",
            "Passwords do not match",
        ]

    def test_duplicate_username(self, client):
        assert _register_client(client).status_code == 200
        resp = _register_client(client, email="other@test.com")
        assert resp.status_code == 400
        assert resp.json()["error"] == "Email or username already exists"

    def test_email_stored_as_typed(self, client, run, app_db):
        resp = _register_client(client, username="obrien", email=" o'brien&co@test.com ")
        assert resp.status_code == 200
        user = run(app_db.users.find_one, {"username": "obrien"})
        assert user["email"] == "o'brien&co@test.com"

    def test_invalid_activation_token(self, client):
        resp = client.get("/auth/activate/nope", headers=JSON)
        assert resp.status_code == 400

    def test_register_commerce_shares_id(self, client, run, app_db):
        type_id = run(seed_commerce_type, app_db)
        resp = client.post("/auth/register/commerce", json={
            "name": "Burger Place",
            "phone": "809-555-0102",
            "email": "burgers@test.com",
            "username": "burgers",
            "opens_at": "10:00",
            "closes_at": "23:00",
            "commerce_type_id": type_id,
            "password": PASSWORD,
            "password_confirm": PASSWORD,
        })
        assert resp.status_code == 200
        user_id = resp.json()["data"]["id"]
        commerce = run(app_db.commerces.find_one, {"_id": ObjectId(user_id)})
        assert commerce["name"] == "Burger Place"
        assert commerce["is_active"] is False

        user = run(app_db.users.find_one, {"_id": ObjectId(user_id)})
        client.get(f"/auth/activate/{user['activation_token']}")
        commerce = run(app_db.commerces.find_one, {"_id": ObjectId(user_id)})
        assert commerce["is_active"] is True

    def test_register_commerce_unknown_type(self, client):
        resp = client.post("/auth/register/commerce", json={
            "name": "Nowhere",
            "phone": "1",
            "email": "nowhere@test.com",
            "username": "nowhere",
            "opens_at": "10:00",
            "closes_at": "23:00",
            "commerce_type_id": "bogus",
            "password": PASSWORD,
            "password_confirm": PASSWORD,
        })
        assert resp.status_code == 400
        assert resp.json()["details"] == ["Commerce type is required"]


class TestSession:
    def test_bad_credentials(self, client, make_user):
        make_user(Role.CLIENT)
        resp = client.post("/auth/login", json={"identifier": "ghost", "password": "whatever"})
        assert resp.status_code == 401
        assert resp.json()["error"] == "Incorrect username or password"

    def test_me_and_logout(self, client, make_user):
        user_id, headers = make_user(Role.DELIVERY)
        resp = client.get("/auth/me", headers=headers)
        assert resp.status_code == 200
        assert resp.json()["data"]["user_id"] == user_id
        assert resp.json()["data"]["home"] == "/delivery/home"

        assert client.post("/auth/logout", headers=headers).status_code == 200
        assert client.get("/auth/me", headers=headers).status_code == 401

    def test_invalid_token(self, client):
        resp = client.get("/auth/me", headers={"Authorization": "Bearer invalid_token"})
        assert resp.status_code == 401

    def test_browser_without_session_is_redirected(self, client):
        client.cookies.clear()
        resp = client.get("/client/home", follow_redirects=False)
        assert resp.status_code == 303
        assert resp.headers["location"] == "/auth/login"

    def test_root_redirects_to_role_home(self, client, make_user):
        _, headers = make_user(Role.COMMERCE)
        resp = client.get("/", headers=headers, follow_redirects=False)
        assert resp.status_code == 303
        assert resp.headers["location"] == "/commerce/home"

    def test_role_gate(self, client, make_user):
        _, headers = make_user(Role.CLIENT)
        resp = client.get("/admin/config", headers=headers)
        assert resp.status_code == 403
        assert resp.json()["error"] == "Access not authorized"

    def test_security_headers(self, client):
        resp = client.get("/auth/me", headers=JSON)
        assert resp.headers["X-Frame-Options"] == "DENY"
        assert resp.headers["X-Content-Type-Options"] == "nosniff"


class TestPasswordReset:
    def test_same_answer_for_unknown_account(self, client, make_user, run, app_db):
        user_id, _ = make_user(Role.CLIENT)
        user = run(app_db.users.find_one, {"_id": ObjectId(user_id)})
        known = client.post("/auth/forgot-password", json={"identifier": user["email"]})
        unknown = client.post("/auth/forgot-password", json={"identifier": "nobody"})
        assert known.status_code == unknown.status_code == 200
        assert known.json()["message"] == unknown.json()["message"]

    def test_reset_flow(self, client, run, app_db):
        assert _register_client(client, "rita").status_code == 200
        user = run(app_db.users.find_one, {"username": "rita"})
        client.get(f"/auth/activate/{user['activation_token']}")

        client.post("/auth/forgot-password", json={"identifier": "rita"})
        user = run(app_db.users.find_one, {"username": "rita"})
        token = user["reset_token"]

        resp = client.post(f"/auth/reset-password/{token}", json={"password": "newpass1", "password_confirm": "newpass1"})
        assert resp.status_code == 200

        assert client.post("/auth/login", json={"identifier": "rita", "password": "newpass1"}).status_code == 200
        again = client.post(f"/auth/reset-password/{token}", json={"password": "other12", "password_confirm": "other12"})
        assert again.status_code == 400
