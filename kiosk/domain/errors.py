from __future__ import annotations


class DomainError(Exception):
    pass


class DomainValidationError(DomainError):
    pass


class DomainNotFoundError(DomainError):
    pass


class DomainConflictError(DomainError):
    pass


class DomainInvariantError(DomainConflictError):
    pass


class DomainDependencyError(DomainError):
    pass


class DuplicateNameError(DomainValidationError):
    pass
