from __future__ import annotations


class AccessEngineError(Exception):
    pass


class RecordNotFoundError(AccessEngineError):
    pass


class TargetNotFoundError(RecordNotFoundError):
    pass


class ConflictNotFoundError(AccessEngineError):
    pass


class InvalidSourceError(AccessEngineError):
    pass


class PermissionValidationError(AccessEngineError):
    pass


class ConcurrentModificationError(AccessEngineError):
    pass
