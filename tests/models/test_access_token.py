import json
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from pkceflow.models.tokens import AccessToken, TokenResponse

ISSUED_AT = datetime(2025, 10, 14, 12, 0, 0, 123456, tzinfo=timezone.utc)


class TestExpiry:
    def test_expires_at_is_issued_at_plus_lifetime(self):
        token = AccessToken(token="tok", expires_in=3600, issued_at=ISSUED_AT)

        assert token.expires_at == ISSUED_AT + timedelta(seconds=3600)

    def test_expires_at_absent_without_lifetime(self):
        token = AccessToken(token="tok", issued_at=ISSUED_AT)

        assert token.expires_at is None
        assert not token.is_expired()

    def test_is_expired_honours_leeway(self):
        token = AccessToken(token="tok", expires_in=60, issued_at=ISSUED_AT)

        assert not token.is_expired(leeway_seconds=0, now=ISSUED_AT)
        assert token.is_expired(leeway_seconds=60, now=ISSUED_AT)
        assert token.is_expired(leeway_seconds=0, now=ISSUED_AT + timedelta(hours=1))

    def test_naive_issued_at_is_treated_as_utc(self):
        token = AccessToken(token="tok", issued_at=datetime(2025, 1, 1, 8, 0))

        assert token.issued_at.tzinfo is timezone.utc


class TestPersistence:
    def test_round_trip_keeps_every_field(self):
        # Arrange
        token = AccessToken(
            token="tok1",
            refresh_token="ref1",
            scope="profile openid",
            token_type="Bearer",
            expires_in=3600,
            issued_at=ISSUED_AT,
        )

        # Act
        restored = AccessToken.from_json_bytes(token.to_json_bytes())

        # Assert
        assert restored == token
        assert restored.expires_at == token.expires_at

    def test_round_trip_with_optional_fields_absent(self):
        token = AccessToken(token="tok1", issued_at=ISSUED_AT)

        assert AccessToken.from_json_bytes(token.to_json_bytes()) == token

    def test_serialized_field_names(self):
        token = AccessToken(
            token="tok1", refresh_token="ref1", token_type="Bearer", issued_at=ISSUED_AT
        )

        data = json.loads(token.to_json_bytes())

        assert set(data) == {
            "token",
            "refreshToken",
            "scope",
            "type",
            "expiresIn",
            "issuedAt",
        }
        assert data["refreshToken"] == "ref1"
        assert data["type"] == "Bearer"

    def test_garbage_is_rejected(self):
        with pytest.raises(ValidationError):
            AccessToken.from_json_bytes(b"not json at all")

    def test_missing_issued_at_is_rejected(self):
        with pytest.raises(ValidationError):
            AccessToken.from_json_bytes(b'{"token": "old", "expiresIn": 60}')

    def test_token_is_immutable(self):
        token = AccessToken(token="tok1", issued_at=ISSUED_AT)

        with pytest.raises(ValidationError):
            token.token = "tok2"


class TestTokenHelpers:
    def test_can_refresh(self):
        with_refresh = AccessToken(token="t", refresh_token="r", issued_at=ISSUED_AT)
        without_refresh = AccessToken(token="t", issued_at=ISSUED_AT)

        assert with_refresh.can_refresh()
        assert not without_refresh.can_refresh()

    def test_authorization_header_defaults_to_bearer(self):
        bearer = AccessToken(token="t", issued_at=ISSUED_AT)
        mac = AccessToken(token="t", token_type="MAC", issued_at=ISSUED_AT)

        assert bearer.authorization_header() == "Bearer t"
        assert mac.authorization_header() == "MAC t"

    def test_secrets_not_in_repr(self):
        token = AccessToken(
            token="secret-access", refresh_token="secret-refresh", issued_at=ISSUED_AT
        )

        assert "secret-access" not in repr(token)
        assert "secret-refresh" not in repr(token)


class TestTokenResponse:
    def test_success_converts_to_access_token(self):
        # Arrange
        response = TokenResponse(
            access_token="tok1",
            token_type="Bearer",
            expires_in=3600,
            refresh_token="ref1",
            scope="openid",
        )

        # Act
        token = response.to_access_token(issued_at=ISSUED_AT)

        # Assert
        assert token.token == "tok1"
        assert token.refresh_token == "ref1"
        assert token.expires_in == 3600
        assert token.issued_at == ISSUED_AT

    def test_fallback_refresh_token_used_when_not_rotated(self):
        response = TokenResponse(access_token="tok2")

        token = response.to_access_token(ISSUED_AT, fallback_refresh_token="ref1")

        assert token.refresh_token == "ref1"

    def test_rotated_refresh_token_wins(self):
        response = TokenResponse(access_token="tok2", refresh_token="ref2")

        token = response.to_access_token(ISSUED_AT, fallback_refresh_token="ref1")

        assert token.refresh_token == "ref2"

    def test_error_response_cannot_convert(self):
        response = TokenResponse(error="invalid_grant")

        assert response.is_error()
        with pytest.raises(ValueError):
            response.to_access_token(ISSUED_AT)
