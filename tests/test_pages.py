from conftest import latest_code, sign_in


class TestGuards:
    def test_passwords_without_session_redirects_to_auth(self, client):
        r = client.get("/passwords", follow_redirects=False)
        assert r.status_code == 303
        assert r.headers["location"] == "/auth"

    def test_pending_session_is_sent_to_verify_otp(self, client, identity):
        identity.add_user("user@example.com", "secret123")
        sign_in(client)
        r = client.get("/passwords", follow_redirects=False)
        assert r.headers["location"] == "/verify-otp"
        r = client.get("/auth", follow_redirects=False)
        assert r.headers["location"] == "/verify-otp"

    def test_verified_session_skips_auth(self, signed_in):
        r = signed_in.get("/auth", follow_redirects=False)
        assert r.headers["location"] == "/passwords"
        r = signed_in.get("/verify-otp", follow_redirects=False)
        assert r.headers["location"] == "/passwords"

    def test_verify_otp_without_session(self, client):
        r = client.get("/verify-otp", follow_redirects=False)
        assert r.headers["location"] == "/auth"
        r = client.get("/auth")
        assert "Missing email information. Please log in again." in r.text

    def test_update_password_requires_oob_code(self, client):
        r = client.get("/update-password", follow_redirects=False)
        assert r.headers["location"] == "/auth"
        assert "Invalid access" in client.get("/auth").text

        r = client.get("/update-password?oobCode=abc123")
        assert r.status_code == 200
        assert 'value="abc123"' in r.text

    def test_flash_is_shown_once(self, client):
        client.get("/verify-otp", follow_redirects=False)
        assert "Missing email information" in client.get("/auth").text
        assert "Missing email information" not in client.get("/auth").text


class TestNotFound:
    def test_unknown_page_renders_html(self, client):
        r = client.get("/no-such-page")
        assert r.status_code == 404
        assert "text/html" in r.headers["content-type"]
        assert "Page not found" in r.text

    def test_unknown_api_path_is_json(self, client):
        r = client.get("/api/no-such-endpoint")
        assert r.status_code == 404
        assert r.json() == {"error": "Not Found"}


class TestForms:
    def test_failed_sign_in_stays_on_auth(self, client, identity):
        identity.add_user("user@example.com", "secret123")
        r = client.post("/auth/signin", data={"email": "user@example.com", "password": "nope"}, follow_redirects=False)
        assert r.status_code == 400
        assert "Invalid login credentials" in r.text

    def test_full_sign_in_and_vault_flow(self, client, identity):
        identity.add_user("user@example.com", "secret123")
        r = client.post("/auth/signin", data={"email": "user@example.com", "password": "secret123"}, follow_redirects=False)
        assert r.status_code == 303
        assert r.headers["location"] == "/verify-otp"

        page = client.get("/verify-otp")
        assert "user@example.com" in page.text

        r = client.post("/verify-otp", data={"code": latest_code("user@example.com")}, follow_redirects=False)
        assert r.headers["location"] == "/passwords"
        assert "Email verified successfully" in client.get("/passwords").text

        r = client.post("/passwords", data={
            "website_url": "https://example.com", "username": "me", "password": "hunter2",
        }, follow_redirects=False)
        assert r.headers["location"] == "/passwords"

        page = client.get("/passwords").text
        assert "https://example.com" in page
        assert "hunter2" in page  # copy button payload

        credential_id = client.get("/api/credentials").json()["credentials"][0]["id"]
        revealed = client.get(f"/passwords?reveal={credential_id}").text
        assert "Hide" in revealed

        r = client.post(f"/passwords/{credential_id}/delete", follow_redirects=False)
        assert r.headers["location"] == "/passwords"
        assert client.get("/api/credentials").json() == {"credentials": []}

        r = client.post("/logout", follow_redirects=False)
        assert r.headers["location"] == "/"
        assert client.get("/passwords", follow_redirects=False).headers["location"] == "/auth"

    def test_wrong_code_stays_on_verify_page(self, client, identity):
        identity.add_user("user@example.com", "secret123")
        client.post("/auth/signin", data={"email": "user@example.com", "password": "secret123"})
        code = latest_code("user@example.com")
        r = client.post("/verify-otp", data={"code": "000000" if code != "000000" else "111111"})
        assert r.status_code == 400
        assert "Verification code is incorrect" in r.text

    def test_malformed_code_stays_on_verify_page(self, client, identity):
        identity.add_user("user@example.com", "secret123")
        client.post("/auth/signin", data={"email": "user@example.com", "password": "secret123"})
        r = client.post("/verify-otp", data={"code": "é"})
        assert r.status_code == 400
        assert "Invalid code format" in r.text

    def test_missing_credential_field_re_renders(self, signed_in):
        r = signed_in.post("/passwords", data={"website_url": "https://example.com", "username": "", "password": "x"})
        assert r.status_code == 400
        assert "Username/Email is required" in r.text

    def test_password_reset_form(self, client, identity):
        identity.add_user("user@example.com", "secret123")
        r = client.post("/reset-password", data={"email": "user@example.com"}, follow_redirects=False)
        assert r.status_code == 303
        assert "Check your email for a password reset link" in client.get("/reset-password").text

    def test_update_password_form(self, client, identity):
        identity.add_user("user@example.com", "secret123")
        client.post("/reset-password", data={"email": "user@example.com"})
        oob = next(iter(identity.oob_codes))
        r = client.post("/update-password", data={
            "password": "newsecret", "confirm_password": "newsecret", "oob_code": oob,
        }, follow_redirects=False)
        assert r.headers["location"] == "/auth"
        assert identity.users["user@example.com"]["password"] == "newsecret"

    def test_delete_account_form(self, signed_in, identity):
        r = signed_in.post("/account/delete", follow_redirects=False)
        assert r.headers["location"] == "/"
        assert identity.deleted == ["uid-1"]


class TestHealth:
    def test_health(self, client):
        assert client.get("/api/health").json()["status"] == "ok"
