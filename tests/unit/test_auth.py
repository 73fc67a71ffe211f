from __future__ import annotations

from datetime import UTC, datetime, timedelta

from fastapi import HTTPException
import pytest

from kiosk.api.auth import (
    Role,
    TokenError,
    authenticate,
    check_password,
    issue_token,
    optional_role,
    verify_token,
)
from kiosk.settings import AuthSettings

SETTINGS = AuthSettings(
    admin_password="admin-pass",
    capture_password="kiosk-pass",
    token_secret="unit-secret",
    processor_secret="proc-secret",
    token_ttl_seconds=3600,
)
NOW = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)
ADMIN_ONLY = frozenset({Role.ADMIN})
PROCESSOR_ONLY = frozenset({Role.PROCESSOR})


@pytest.mark.unit
def test_token_round_trip_and_expiry() -> None:
    token = issue_token(SETTINGS, Role.CAPTURE, now=NOW)

    assert verify_token(SETTINGS, token, now=NOW + timedelta(minutes=59)) == Role.CAPTURE
    with pytest.raises(TokenError, match="expired"):
        verify_token(SETTINGS, token, now=NOW + timedelta(hours=1))


@pytest.mark.unit
def test_token_signed_with_other_secret_is_rejected() -> None:
    foreign = issue_token(AuthSettings(token_secret="other"), Role.ADMIN, now=NOW)

    with pytest.raises(TokenError, match="bad signature"):
        verify_token(SETTINGS, foreign, now=NOW)
    with pytest.raises(TokenError, match="malformed"):
        verify_token(SETTINGS, "no-dot-here", now=NOW)


@pytest.mark.unit
def test_non_ascii_tokens_are_rejected_as_invalid() -> None:
    token = issue_token(SETTINGS, Role.ADMIN, now=NOW)
    body, _, signature = token.partition(".")

    with pytest.raises(TokenError, match="bad signature"):
        verify_token(SETTINGS, f"{body}.{signature[:-1]}\u00e9", now=NOW)
    with pytest.raises(TokenError, match="malformed"):
        verify_token(SETTINGS, "\u00e9bc.def", now=NOW)
    with pytest.raises(HTTPException) as exc_info:
        authenticate(SETTINGS, authorization="Bearer abc.d\u00e9f", processor_secret=None, allowed=ADMIN_ONLY)
    assert (exc_info.value.status_code, exc_info.value.detail) == (401, "Invalid token")


@pytest.mark.unit
def test_check_password_per_role() -> None:
    assert check_password(SETTINGS, Role.ADMIN, "admin-pass") is True
    assert check_password(SETTINGS, Role.ADMIN, "kiosk-pass") is False
    assert check_password(SETTINGS, Role.CAPTURE, "kiosk-pass") is True
    assert check_password(AuthSettings(), Role.ADMIN, "") is False


@pytest.mark.unit
def test_authenticate_requires_header() -> None:
    with pytest.raises(HTTPException) as exc_info:
        authenticate(SETTINGS, authorization=None, processor_secret=None, allowed=ADMIN_ONLY)

    assert exc_info.value.status_code == 401
    assert exc_info.value.detail == "No authorization header"


@pytest.mark.unit
def test_authenticate_rejects_bad_token_and_wrong_role() -> None:
    capture_token = issue_token(SETTINGS, Role.CAPTURE)

    with pytest.raises(HTTPException) as bad:
        authenticate(SETTINGS, authorization="Bearer garbage.sig", processor_secret=None, allowed=ADMIN_ONLY)
    with pytest.raises(HTTPException) as denied:
        authenticate(SETTINGS, authorization=f"Bearer {capture_token}", processor_secret=None, allowed=ADMIN_ONLY)

    assert (bad.value.status_code, bad.value.detail) == (401, "Invalid token")
    assert (denied.value.status_code, denied.value.detail) == (403, "Access denied")


@pytest.mark.unit
def test_processor_secret_accepted_as_bearer_or_query() -> None:
    assert (
        authenticate(SETTINGS, authorization="Bearer proc-secret", processor_secret=None, allowed=PROCESSOR_ONLY)
        == Role.PROCESSOR
    )
    assert (
        authenticate(SETTINGS, authorization=None, processor_secret="proc-secret", allowed=PROCESSOR_ONLY)
        == Role.PROCESSOR
    )

    with pytest.raises(HTTPException) as exc_info:
        authenticate(SETTINGS, authorization="Bearer wrong", processor_secret=None, allowed=PROCESSOR_ONLY)
    assert (exc_info.value.status_code, exc_info.value.detail) == (401, "Invalid processor secret")


@pytest.mark.unit
def test_processor_secret_does_not_open_admin_routes() -> None:
    with pytest.raises(HTTPException) as exc_info:
        authenticate(SETTINGS, authorization=None, processor_secret="proc-secret", allowed=ADMIN_ONLY)

    assert exc_info.value.status_code == 401


@pytest.mark.unit
def test_unset_processor_secret_never_matches() -> None:
    settings = AuthSettings(token_secret="s")

    with pytest.raises(HTTPException):
        authenticate(settings, authorization="Bearer ", processor_secret="", allowed=PROCESSOR_ONLY)


@pytest.mark.unit
def test_optional_role_ignores_invalid_tokens() -> None:
    admin_token = issue_token(SETTINGS, Role.ADMIN)

    assert optional_role(SETTINGS, authorization=f"Bearer {admin_token}") == Role.ADMIN
    assert optional_role(SETTINGS, authorization="Bearer nope") is None
    assert optional_role(SETTINGS, authorization=None) is None
