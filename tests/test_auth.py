from __future__ import annotations

from datetime import timedelta

from jose import jwt

from chatrelay.core.config import settings
from chatrelay.schemas.auth import Identity
from chatrelay.utils.auth import create_access_token, verify_token
from chatrelay.utils.sanitizer import contains_script_tag, sanitize_string


def test_token_round_trip():
    token = create_access_token("user-1", "user@example.com")

    assert token.token_type == "bearer"
    assert verify_token(token.access_token) == Identity(user_id="user-1", email="user@example.com")


def test_expired_token_is_rejected():
    token = create_access_token("user-1", expires_delta=timedelta(seconds=-1))
    assert verify_token(token.access_token) is None


def test_tampered_or_foreign_tokens_are_rejected():
    token = create_access_token("user-1").access_token
    header, payload, signature = token.split(".")
    assert verify_token(f"{header}.{payload}.{signature[::-1]}") is None

    foreign = jwt.encode({"sub": "user-1"}, "some-other-secret", algorithm=settings.JWT_ALGORITHM)
    assert verify_token(foreign) is None
    assert verify_token("garbage") is None


def test_token_without_subject_is_anonymous():
    token = jwt.encode({"email": "x@example.com"}, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    assert verify_token(token) is None


def test_sanitizer():
    assert sanitize_string("<b>hi</b>") == "&lt;b&gt;hi&lt;/b&gt;"
    assert sanitize_string("a<script>x</script>b\0") == "ab"
    assert contains_script_tag("hi <SCRIPT src=x>1</script>")
    assert not contains_script_tag("a < b and script")
