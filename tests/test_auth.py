"""Tests for inbound API key authentication."""

import sys
from pathlib import Path

import pytest
from fastapi import HTTPException
from starlette.requests import Request

sys.path.insert(0, str(Path(__file__).parent.parent))

from msgrelay.auth.api_key import ApiKeyValidator
from msgrelay.core.registry import set_settings

from conftest import build_settings


def _request(headers: dict[str, str]) -> Request:
    raw = [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in headers.items()]
    return Request({"type": "http", "method": "POST", "path": "/v1/messages", "headers": raw})


def _error_code(exc_info) -> str:
    return exc_info.value.detail["error"]["code"]


class TestApiKeyValidator:
    """Credential checks."""

    def setup_method(self):
        self.validator = ApiKeyValidator(token="secret")

    def test_x_api_key_accepted(self):
        self.validator.validate_request(_request({"X-API-Key": "secret"}))

    def test_bearer_accepted(self):
        self.validator.validate_request(_request({"Authorization": "Bearer secret"}))

    def test_missing_credentials(self):
        with pytest.raises(HTTPException) as exc_info:
            self.validator.validate_request(_request({}))
        assert exc_info.value.status_code == 401
        assert _error_code(exc_info) == "missing_api_key"

    def test_malformed_authorization(self):
        with pytest.raises(HTTPException) as exc_info:
            self.validator.validate_request(_request({"Authorization": "Basic c2VjcmV0"}))
        assert exc_info.value.status_code == 401
        assert _error_code(exc_info) == "invalid_authorization_header"

    def test_wrong_bearer_token(self):
        with pytest.raises(HTTPException) as exc_info:
            self.validator.validate_request(_request({"Authorization": "Bearer nope"}))
        assert _error_code(exc_info) == "invalid_api_key"

    def test_wrong_x_api_key(self):
        with pytest.raises(HTTPException) as exc_info:
            self.validator.validate_request(_request({"X-API-Key": "nope"}))
        assert exc_info.value.status_code == 401
        assert _error_code(exc_info) == "invalid_api_key"

    def test_non_ascii_x_api_key_rejected(self):
        with pytest.raises(HTTPException) as exc_info:
            self.validator.validate_request(_request({"X-API-Key": "t\xe9st"}))
        assert exc_info.value.status_code == 401
        assert _error_code(exc_info) == "invalid_api_key"

    def test_non_ascii_bearer_token_rejected(self):
        with pytest.raises(HTTPException) as exc_info:
            self.validator.validate_request(_request({"Authorization": "Bearer s\xe9cret"}))
        assert exc_info.value.status_code == 401
        assert _error_code(exc_info) == "invalid_api_key"

    def test_non_ascii_configured_token(self):
        validator = ApiKeyValidator(token="s\xe9cret")
        validator.validate_request(_request({"X-API-Key": "s\xe9cret"}))

    def test_wrong_x_api_key_with_valid_bearer(self):
        self.validator.validate_request(_request({"X-API-Key": "nope", "Authorization": "Bearer secret"}))

    def test_unconfigured_token_is_server_error(self):
        validator = ApiKeyValidator(token="")
        with pytest.raises(HTTPException) as exc_info:
            validator.validate_request(_request({"X-API-Key": "anything"}))
        assert exc_info.value.status_code == 500
        assert exc_info.value.detail["error"]["type"] == "api_error"

    def test_token_from_active_settings(self):
        set_settings(build_settings(auth_token="from-settings"))
        try:
            validator = ApiKeyValidator()
            assert validator.token == "from-settings"
            validator.validate_request(_request({"X-API-Key": "from-settings"}))
        finally:
            set_settings(None)
