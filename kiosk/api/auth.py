from __future__ import annotations

import base64
import binascii
from datetime import datetime
from enum import StrEnum
import hashlib
import hmac
import json

from fastapi import HTTPException

from kiosk.domain.lifecycle import Actor
from kiosk.domain.use_cases.deps import utc_now
from kiosk.settings import AuthSettings


class Role(StrEnum):
    ADMIN = "admin"
    CAPTURE = "capture"
    PROCESSOR = "processor"


ACTOR_BY_ROLE: dict[Role, Actor] = {
    Role.ADMIN: Actor.ADMIN,
    Role.CAPTURE: Actor.KIOSK,
    Role.PROCESSOR: Actor.PROCESSOR,
}

LOGIN_ROLES: frozenset[Role] = frozenset({Role.ADMIN, Role.CAPTURE})


class TokenError(Exception):
    pass


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


def _sign(secret: str, body: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), body.encode("ascii"), hashlib.sha256).digest()
    return _b64encode(digest)


def issue_token(settings: AuthSettings, role: Role, *, now: datetime | None = None) -> str:
    """Signed `<payload>.<signature>` token carrying the role and an expiry."""
    issued_at = now or utc_now()
    payload = {"role": role.value, "exp": int(issued_at.timestamp()) + settings.token_ttl_seconds}
    body = _b64encode(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
    return f"{body}.{_sign(settings.token_secret, body)}"


def verify_token(settings: AuthSettings, token: str, *, now: datetime | None = None) -> Role:
    body, _, signature = token.partition(".")
    if not body or not signature:
        raise TokenError("malformed token")
    try:
        expected = _sign(settings.token_secret, body)
    except UnicodeEncodeError as exc:
        raise TokenError("malformed token") from exc
    if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("ascii")):
        raise TokenError("bad signature")

    try:
        payload = json.loads(_b64decode(body))
        role = Role(payload["role"])
        expires_at = int(payload["exp"])
    except (binascii.Error, ValueError, KeyError, TypeError) as exc:
        raise TokenError("malformed token") from exc

    current = now or utc_now()
    if current.timestamp() >= expires_at:
        raise TokenError("token expired")
    return role


def check_password(settings: AuthSettings, role: Role, password: str) -> bool:
    expected = settings.admin_password if role == Role.ADMIN else settings.capture_password
    # An unset password disables the login instead of accepting anything.
    if not expected or not password:
        return False
    return hmac.compare_digest(password.encode("utf-8"), expected.encode("utf-8"))


def _bearer(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


def _is_processor_secret(settings: AuthSettings, candidate: str | None) -> bool:
    if not settings.processor_secret or not candidate:
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), settings.processor_secret.encode("utf-8"))


def authenticate(
    settings: AuthSettings,
    *,
    authorization: str | None,
    processor_secret: str | None,
    allowed: frozenset[Role],
) -> Role:
    """Resolve the caller's role or raise 401/403.

    The processor authenticates with the shared secret, either as a bearer
    value or as the `processorSecret` query parameter. Admin and capture
    callers present a token from the login endpoints.
    """
    token = _bearer(authorization)
    if Role.PROCESSOR in allowed:
        if _is_processor_secret(settings, token) or _is_processor_secret(settings, processor_secret):
            return Role.PROCESSOR

    if token is None:
        if allowed == {Role.PROCESSOR}:
            raise HTTPException(status_code=401, detail="Invalid processor secret")
        raise HTTPException(status_code=401, detail="No authorization header")

    try:
        role = verify_token(settings, token)
    except TokenError as exc:
        if allowed == {Role.PROCESSOR}:
            raise HTTPException(status_code=401, detail="Invalid processor secret") from exc
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    if role not in allowed:
        raise HTTPException(status_code=403, detail="Access denied")
    return role


def optional_role(settings: AuthSettings, *, authorization: str | None) -> Role | None:
    token = _bearer(authorization)
    if token is None:
        return None
    try:
        return verify_token(settings, token)
    except TokenError:
        return None
