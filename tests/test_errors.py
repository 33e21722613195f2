"""Tests for backend error classification."""

from __future__ import annotations

import httpx
import pytest

from repo_chat.errors import (
    GenerationError,
    InvalidCredentialError,
    MissingCredentialError,
    classify_backend_error,
)


class _StatusError(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"status {status_code}")
        self.status_code = status_code


@pytest.mark.parametrize("status", [400, 401, 403])
def test_credential_status_codes(status: int) -> None:
    assert classify_backend_error(_StatusError(status)) is InvalidCredentialError


def test_other_status_is_generic() -> None:
    assert classify_backend_error(_StatusError(500)) is GenerationError


def test_httpx_response_status_is_inspected() -> None:
    request = httpx.Request("POST", "https://example.com")
    response = httpx.Response(403, request=request)
    error = httpx.HTTPStatusError("forbidden", request=request, response=response)
    assert classify_backend_error(error) is InvalidCredentialError


def test_message_mentioning_api_key() -> None:
    assert classify_backend_error(RuntimeError("API key not valid")) is InvalidCredentialError
    assert classify_backend_error(RuntimeError("connection reset")) is GenerationError


def test_credential_errors_keep_their_type() -> None:
    assert classify_backend_error(MissingCredentialError("no key")) is MissingCredentialError
