import pytest

from kiosk.domain.error_taxonomy import (
    classify_domain_error,
    http_status_for,
    is_canonical_error_code,
    public_message,
)
from kiosk.domain.errors import (
    DomainConflictError,
    DomainDependencyError,
    DomainError,
    DomainInvariantError,
    DomainNotFoundError,
    DomainValidationError,
    DuplicateNameError,
)


@pytest.mark.unit
def test_canonical_error_codes_are_enforced() -> None:
    assert is_canonical_error_code("invalid_transition") is True
    assert is_canonical_error_code("schema_validation_failed") is False


@pytest.mark.unit
@pytest.mark.parametrize(
    ("exc", "code", "status"),
    [
        (DuplicateNameError("Preset name already exists"), "duplicate_name", 400),
        (DomainValidationError("Name and prompt are required"), "validation_error", 400),
        (DomainNotFoundError("Submission not found"), "not_found", 404),
        (DomainConflictError("Cannot transition from pending to completed"), "invalid_transition", 409),
        (DomainInvariantError("submission changed concurrently"), "invalid_transition", 409),
        (DomainDependencyError("s3 unreachable"), "dependency_failed", 500),
        (DomainError("unexpected"), "internal_error", 500),
    ],
)
def test_domain_errors_map_to_codes_and_statuses(exc: DomainError, code: str, status: int) -> None:
    resolved = classify_domain_error(exc)

    assert resolved == code
    assert http_status_for(resolved) == status


@pytest.mark.unit
def test_collaborator_failures_hide_their_message() -> None:
    dependency = DomainDependencyError("bucket credentials rejected")
    not_found = DomainNotFoundError("Event not found")

    assert public_message(dependency, classify_domain_error(dependency)) == "internal error"
    assert public_message(not_found, classify_domain_error(not_found)) == "Event not found"
