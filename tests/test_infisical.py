"""Tests for the Infisical backend.

All HTTP calls are mocked at ``requests.request``.
"""

from __future__ import annotations

import base64
import threading
from typing import Any, Optional
from unittest.mock import MagicMock, patch

import requests

from signvault.backends.infisical import InfisicalBackend, InfisicalError, sanitize_secret_name
from signvault.models import BackendConfig, BackendType

PATCH_TARGET = "signvault.backends.infisical.requests.request"


def _config(**overrides: str) -> BackendConfig:
    settings = {
        "ClientId": "client",
        "ClientSecret": "secret",
        "ProjectId": "proj-1",
    }
    settings.update(overrides)
    return BackendConfig(name="inf", backend_type=BackendType.INFISICAL, settings=settings)


def _response(status: int = 200, payload: Optional[dict[str, Any]] = None, text: str = "") -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = payload or {}
    resp.content = b"{}" if payload is not None else b""
    resp.text = text
    return resp


LOGIN = _response(200, {"accessToken": "tok"})


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestSanitize:
    """Secret name folding."""

    def test_uppercases_and_replaces(self) -> None:
        assert sanitize_secret_name("cert-abc.p12") == "CERT_ABC_P12"

    def test_leading_digit_gets_letter(self) -> None:
        assert sanitize_secret_name("1abc") == "S1ABC"

    def test_error_not_found(self) -> None:
        assert InfisicalError(404, "").not_found
        assert InfisicalError(400, "Secret not found").not_found
        assert not InfisicalError(500, "boom").not_found


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


class TestInfisicalBackend:
    """REST flows."""

    def test_defaults_fill_settings(self) -> None:
        backend = InfisicalBackend(_config())
        assert backend.setting("SiteUrl") == "https://app.infisical.com"
        assert backend.setting("Environment") == "prod"
        assert backend.missing_settings() == []

    def test_connection_missing_settings(self) -> None:
        backend = InfisicalBackend(_config(ClientSecret=""))
        with patch(PATCH_TARGET) as mock_request:
            assert backend.test_connection() is False
            mock_request.assert_not_called()

    def test_connection_ok(self) -> None:
        backend = InfisicalBackend(_config())
        with patch(PATCH_TARGET, side_effect=[LOGIN, _response(200, {"secrets": []})]) as mock_request:
            assert backend.test_connection() is True
        login_call, list_call = mock_request.call_args_list
        assert login_call.args[1].endswith("/api/v1/auth/universal-auth/login")
        assert list_call.kwargs["headers"]["Authorization"] == "Bearer tok"
        assert list_call.kwargs["params"]["workspaceId"] == "proj-1"
        assert list_call.kwargs["timeout"] == backend.timeout

    def test_connection_auth_failure(self) -> None:
        backend = InfisicalBackend(_config())
        with patch(PATCH_TARGET, return_value=_response(401, text="bad creds")):
            assert backend.test_connection() is False

    def test_connection_network_error(self) -> None:
        backend = InfisicalBackend(_config())
        with patch(PATCH_TARGET, side_effect=requests.ConnectionError("down")):
            assert backend.test_connection() is False

    def test_store_creates_when_absent(self) -> None:
        backend = InfisicalBackend(_config())
        responses = [LOGIN, _response(404, text="Secret not found"), _response(200, {"secret": {}})]
        with patch(PATCH_TARGET, side_effect=responses) as mock_request:
            assert backend.store_secret("cert_1_p12", b"\x00\x01") is True
        create = mock_request.call_args_list[-1]
        assert create.args[0] == "POST"
        assert create.args[1].endswith("/api/v3/secrets/raw/CERT_1_P12")
        assert create.kwargs["json"]["secretValue"] == base64.b64encode(b"\x00\x01").decode()

    def test_store_updates_when_present(self) -> None:
        backend = InfisicalBackend(_config())
        existing = _response(200, {"secret": {"secretKey": "K", "secretValue": "AA=="}})
        with patch(PATCH_TARGET, side_effect=[LOGIN, existing, _response(200, {})]) as mock_request:
            assert backend.store_secret("k", b"v") is True
        assert mock_request.call_args_list[-1].args[0] == "PATCH"

    def test_get_decodes_base64(self) -> None:
        backend = InfisicalBackend(_config())
        payload = {"secret": {"secretValue": base64.b64encode(b"hello").decode()}}
        with patch(PATCH_TARGET, side_effect=[LOGIN, _response(200, payload)]):
            assert backend.get_secret("k") == b"hello"

    def test_get_missing_returns_none(self) -> None:
        backend = InfisicalBackend(_config())
        with patch(PATCH_TARGET, side_effect=[LOGIN, _response(404, text="not found")]):
            assert backend.get_secret("k") is None

    def test_get_invalid_base64_returns_none(self) -> None:
        backend = InfisicalBackend(_config())
        payload = {"secret": {"secretValue": "***"}}
        with patch(PATCH_TARGET, side_effect=[LOGIN, _response(200, payload)]):
            assert backend.get_secret("k") is None

    def test_delete_missing_is_success(self) -> None:
        backend = InfisicalBackend(_config())
        with patch(PATCH_TARGET, side_effect=[LOGIN, _response(404, text="not found")]):
            assert backend.delete_secret("k") is True

    def test_delete_server_error(self) -> None:
        backend = InfisicalBackend(_config())
        with patch(PATCH_TARGET, side_effect=[LOGIN, _response(500, text="boom")]):
            assert backend.delete_secret("k") is False

    def test_list_filters_prefix(self) -> None:
        backend = InfisicalBackend(_config())
        payload = {"secrets": [{"secretKey": "CERT_A_P12"}, {"secretKey": "OTHER"}]}
        with patch(PATCH_TARGET, side_effect=[LOGIN, _response(200, payload)]):
            assert backend.list_secrets("cert_") == ["CERT_A_P12"]

    def test_token_cleared_on_401(self) -> None:
        backend = InfisicalBackend(_config())
        with patch(PATCH_TARGET, side_effect=[LOGIN, _response(401, text="expired")]):
            assert backend.secret_exists("k") is False
        assert backend._token is None

    def test_cancelled_makes_no_calls(self) -> None:
        backend = InfisicalBackend(_config())
        cancel = threading.Event()
        cancel.set()
        with patch(PATCH_TARGET) as mock_request:
            assert backend.store_secret("k", b"v", cancel=cancel) is False
            assert backend.get_secret("k", cancel=cancel) is None
            assert backend.list_secrets(cancel=cancel) == []
            mock_request.assert_not_called()
