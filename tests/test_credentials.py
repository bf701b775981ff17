from conftest import latest_code, sign_in
from models.credential import Credential


def _create(client, website_url="https://example.com", username="me@example.com", password="hunter2"):
    return client.post("/api/credentials", json={
        "website_url": website_url, "username": username, "password": password,
    })


class TestAccessControl:
    def test_requires_session(self, client):
        assert client.get("/api/credentials").status_code == 401
        assert _create(client).status_code == 401
        assert client.delete("/api/credentials/1").status_code == 401

    def test_pending_second_factor_is_forbidden(self, client, identity):
        identity.add_user("user@example.com", "secret123")
        sign_in(client)
        r = client.get("/api/credentials")
        assert r.status_code == 403
        assert r.json() == {"error": "Verification required"}


class TestCrud:
    def test_list_reflects_insert_and_delete(self, signed_in):
        assert signed_in.get("/api/credentials").json() == {"credentials": []}

        first = _create(signed_in, website_url="https://one.example").json()
        second = _create(signed_in, website_url="https://two.example").json()

        rows = signed_in.get("/api/credentials").json()["credentials"]
        assert [r["id"] for r in rows] == [second["id"], first["id"]]
        assert rows[0]["password"] == "hunter2"

        r = signed_in.delete(f"/api/credentials/{first['id']}")
        assert r.status_code == 200
        rows = signed_in.get("/api/credentials").json()["credentials"]
        assert [r["id"] for r in rows] == [second["id"]]

    def test_username_list_is_normalized(self, signed_in):
        r = _create(signed_in, username=["listed@example.com"])
        assert r.status_code == 201
        assert r.json()["username"] == "listed@example.com"

    def test_required_fields(self, signed_in):
        r = _create(signed_in, website_url="")
        assert r.status_code == 400
        assert r.json()["error"] == "Website URL is required"
        r = _create(signed_in, username="")
        assert r.status_code == 400
        r = _create(signed_in, password="")
        assert r.status_code == 400
        assert r.json()["error"] == "Password is required"

    def test_passwords_are_encrypted_at_rest(self, signed_in, db):
        _create(signed_in, password="plain-text-secret")
        row = db.query(Credential).first()
        assert row.encrypted_password != "plain-text-secret"
        assert "plain-text-secret" not in row.encrypted_password

    def test_delete_missing_row(self, signed_in):
        assert signed_in.delete("/api/credentials/999").status_code == 404


class TestIsolation:
    def test_users_only_see_their_own_rows(self, signed_in, identity):
        created = _create(signed_in).json()
        signed_in.post("/api/auth/signout")

        identity.add_user("other@example.com", "secret123")
        sign_in(signed_in, email="other@example.com")
        signed_in.post("/api/auth/otp/verify", json={"code": latest_code("other@example.com")})

        assert signed_in.get("/api/credentials").json() == {"credentials": []}
        assert signed_in.delete(f"/api/credentials/{created['id']}").status_code == 404
