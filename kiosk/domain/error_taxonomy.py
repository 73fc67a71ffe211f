from __future__ import annotations

from collections.abc import Mapping
from typing import Literal

from kiosk.domain.errors import (
    DomainConflictError,
    DomainDependencyError,
    DomainError,
    DomainNotFoundError,
    DomainValidationError,
    DuplicateNameError,
)

# Canonical error vocabulary rendered by the HTTP layer.
ErrorCode = Literal[
    "validation_error",
    "duplicate_name",
    "not_found",
    "invalid_transition",
    "dependency_failed",
    "internal_error",
]

CANONICAL_ERROR_CODES: tuple[ErrorCode, ...] = (
    "validation_error",
    "duplicate_name",
    "not_found",
    "invalid_transition",
    "dependency_failed",
    "internal_error",
)

HTTP_STATUS_BY_CODE: Mapping[ErrorCode, int] = {
    "validation_error": 400,
    "duplicate_name": 400,
    "not_found": 404,
    "invalid_transition": 409,
    "dependency_failed": 500,
    "internal_error": 500,
}

# Collaborator failures never leak their own message to callers.
GENERIC_MESSAGE_CODES: frozenset[ErrorCode] = frozenset({"dependency_failed", "internal_error"})


def is_canonical_error_code(code: str) -> bool:
    return code in CANONICAL_ERROR_CODES


def classify_domain_error(exc: DomainError) -> ErrorCode:
    # Most specific subclasses first.
    if isinstance(exc, DuplicateNameError):
        return "duplicate_name"
    if isinstance(exc, DomainValidationError):
        return "validation_error"
    if isinstance(exc, DomainNotFoundError):
        return "not_found"
    if isinstance(exc, DomainConflictError):
        return "invalid_transition"
    if isinstance(exc, DomainDependencyError):
        return "dependency_failed"
    return "internal_error"


def http_status_for(code: ErrorCode) -> int:
    return HTTP_STATUS_BY_CODE.get(code, 500)


def public_message(exc: DomainError, code: ErrorCode) -> str:
    if code in GENERIC_MESSAGE_CODES:
        return "internal error"
    return str(exc)
