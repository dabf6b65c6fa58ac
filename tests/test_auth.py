"""
Bearer Token Verification Tests

Tokens are checked against SUPABASE_JWT_SECRET when it is set and against
Supabase Auth otherwise; a token nobody can vouch for is a 401.
"""

from unittest.mock import patch

from fastapi.testclient import TestClient
from jose import jwt

from complio.main import app
from complio.supabase_client import verify_supabase_token

client = TestClient(app)

SERVER_SECRET = "server-jwt-secret"


def signed_token(key, sub="victim", **claims):
    return jwt.encode({"sub": sub, **claims}, key, algorithm="HS256")


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


class TestSharedSecretVerification:
    """SUPABASE_JWT_SECRET configured"""

    def test_token_signed_with_other_key_is_rejected(self, fake_supabase):
        fake_supabase.seed("documents", {"user_id": "victim", "category": "Tax", "expiration_date": None})
        token = signed_token("attacker-chosen-key")

        with patch("complio.supabase_client.SUPABASE_JWT_SECRET", SERVER_SECRET):
            response = client.get("/api/compliance/score", headers=bearer(token))

        assert response.status_code == 401

    def test_valid_token(self, fake_supabase):
        token = signed_token(SERVER_SECRET, sub="user-9", email="nine@example.com", user_metadata={"a": 1})

        with patch("complio.supabase_client.SUPABASE_JWT_SECRET", SERVER_SECRET):
            user = verify_supabase_token(token)
            response = client.get("/api/onboarding", headers=bearer(token))

        assert user == {
            "id": "user-9",
            "email": "nine@example.com",
            "role": "authenticated",
            "user_metadata": {"a": 1},
        }
        assert response.status_code == 200

    def test_token_without_subject(self):
        token = jwt.encode({"email": "x@example.com"}, SERVER_SECRET, algorithm="HS256")
        with patch("complio.supabase_client.SUPABASE_JWT_SECRET", SERVER_SECRET):
            assert verify_supabase_token(token) is None


class TestAuthServerVerification:
    """No SUPABASE_JWT_SECRET: Supabase Auth validates the token"""

    def test_unknown_token_is_rejected(self, fake_supabase):
        fake_supabase.seed("documents", {"user_id": "victim", "category": "Tax", "expiration_date": None})
        token = signed_token("attacker-chosen-key")

        response = client.get("/api/compliance/score", headers=bearer(token))

        assert response.status_code == 401

    def test_session_token_resolves_user(self, fake_supabase):
        fake_supabase.auth.admin.add_user("user-7", "seven@example.com", {"full_name": "Sam Seven"})
        fake_supabase.auth.sessions["session-token"] = "user-7"

        user = verify_supabase_token("session-token")

        assert user == {
            "id": "user-7",
            "email": "seven@example.com",
            "role": "authenticated",
            "user_metadata": {"full_name": "Sam Seven"},
        }
        assert client.get("/api/onboarding", headers=bearer("session-token")).status_code == 200

    def test_no_way_to_verify(self):
        with patch("complio.supabase_client.supabase", None):
            assert verify_supabase_token(signed_token("any-key")) is None

    def test_empty_token(self):
        assert verify_supabase_token("") is None
