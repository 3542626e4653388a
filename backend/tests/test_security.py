"""
Tests for bearer token signing and verification.
"""

from datetime import timedelta

import pytest
from jose import jwt

from yardops.core.config import get_settings
from yardops.core.security import TokenError, create_access_token, decode_token


class TestTokens:
    def test_round_trip(self) -> None:
        token = create_access_token("user-1", "Ana", email="ana@example.com", role="Admin")

        payload = decode_token(token)

        assert payload["sub"] == "user-1"
        assert payload["firstName"] == "Ana"
        assert payload["email"] == "ana@example.com"
        assert payload["role"] == "Admin"

    def test_expired(self) -> None:
        token = create_access_token("user-1", "Ana", expires_delta=timedelta(seconds=-5))

        with pytest.raises(TokenError) as exc_info:
            decode_token(token)

        assert exc_info.value.code == "TOKEN_EXPIRED"

    def test_wrong_signature(self) -> None:
        token = jwt.encode(
            {"sub": "user-1", "type": "access"},
            "another-secret-key-that-is-long-enough",
            algorithm=get_settings().jwt_algorithm,
        )

        with pytest.raises(TokenError) as exc_info:
            decode_token(token)

        assert exc_info.value.code == "TOKEN_INVALID"

    def test_refresh_token_rejected(self) -> None:
        settings = get_settings()
        token = jwt.encode(
            {"sub": "user-1", "type": "refresh"},
            settings.secret_key,
            algorithm=settings.jwt_algorithm,
        )

        with pytest.raises(TokenError) as exc_info:
            decode_token(token)

        assert exc_info.value.code == "TOKEN_TYPE"

    def test_empty(self) -> None:
        with pytest.raises(TokenError) as exc_info:
            decode_token("")

        assert exc_info.value.code == "EMPTY_TOKEN"
