"""
Unit tests for session tokens.
"""

import time

import pytest
from jose import jwt

from service_blog.app.auth.sessions import ALGORITHM, SessionIssuer, SessionUser

SECRET = "test-secret"


class TestSessionIssuer:
    """Test cases for SessionIssuer."""

    @pytest.fixture
    def issuer(self):
        return SessionIssuer(SECRET, max_age_seconds=3600)

    @pytest.fixture
    def admin(self):
        return SessionUser(
            id="user-1",
            email="admin@example.com",
            first_name="Ada",
            last_name="Lovelace",
            is_superuser=True,
        )

    def test_issue_and_verify(self, issuer, admin):
        issued = issuer.issue(admin)
        session = issuer.verify(issued.token)

        assert session is not None
        assert session.subject_id == "user-1"
        assert session.email == "admin@example.com"
        assert session.display_name == "Ada Lovelace"
        assert session.is_superuser is True
        assert (session.expires_at - session.issued_at).total_seconds() == 3600

    def test_claims(self, issuer, admin):
        token = issuer.issue(admin).token
        claims = jwt.get_unverified_claims(token)

        assert claims["sub"] == "user-1"
        assert claims["firstName"] == "Ada"
        assert claims["isSuperuser"] is True
        assert claims["exp"] - claims["iat"] == 3600

    def test_missing_token(self, issuer):
        assert issuer.verify(None) is None
        assert issuer.verify("") is None

    def test_garbage_token(self, issuer):
        assert issuer.verify("not-a-token") is None

    def test_wrong_secret(self, admin):
        token = SessionIssuer("other-secret", 3600).issue(admin).token

        assert SessionIssuer(SECRET, 3600).verify(token) is None

    def test_tampered_payload(self, issuer, admin):
        header, payload, signature = issuer.issue(admin).token.split(".")
        forged = jwt.encode({"sub": "user-1", "email": "admin@example.com", "isSuperuser": True,
                             "exp": int(time.time()) + 60}, "guess", algorithm=ALGORITHM)

        assert issuer.verify(".".join([header, forged.split(".")[1], signature])) is None

    def test_expired_token(self, admin):
        issuer = SessionIssuer(SECRET, max_age_seconds=10, clock=lambda: time.time() - 3600)

        assert issuer.verify(issuer.issue(admin).token) is None

    def test_missing_subject(self, issuer):
        token = jwt.encode({"email": "admin@example.com", "exp": int(time.time()) + 60},
                           SECRET, algorithm=ALGORITHM)

        assert issuer.verify(token) is None

    def test_superuser_flag_must_be_boolean(self, issuer):
        token = jwt.encode({"sub": "user-1", "email": "admin@example.com", "isSuperuser": "true",
                            "exp": int(time.time()) + 60}, SECRET, algorithm=ALGORITHM)

        session = issuer.verify(token)
        assert session is not None
        assert session.is_superuser is False

    def test_empty_secret_rejected(self):
        with pytest.raises(ValueError):
            SessionIssuer("", 3600)

    def test_to_public(self, issuer, admin):
        session = issuer.issue(admin).session
        public = session.to_public()

        assert public["user"] == {
            "id": "user-1",
            "email": "admin@example.com",
            "firstName": "Ada",
            "lastName": "Lovelace",
            "isSuperuser": True,
        }
        assert public["expires"] == session.expires_at.isoformat()
