from __future__ import annotations


class RoamError(Exception):
    pass


class InvalidArgumentError(RoamError, ValueError):
    pass


class NotFoundError(RoamError, LookupError):
    pass


class OperationFailedError(RoamError, RuntimeError):
    pass
