from __future__ import annotations

import typing as t


class BitRecordError(Exception):
    """
    Base class for all library errors.

    Errors raised while a container drives one of its members are tagged with
    the member's name, outermost container first.
    """
    field_stack: t.Tuple[str, ...]

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
        self.field_stack = ()

    def push_stack(self, field_name: str):
        self.field_stack = (field_name,) + self.field_stack

    def __str__(self) -> str:
        if not self.field_stack:
            return self.message
        return f"{self.message} (in field '{'.'.join(self.field_stack)}')"


class MissingParameter(BitRecordError, TypeError):
    """
    Raised when a mandatory parameter is not given at construction.
    """


class InvalidParameter(BitRecordError, ValueError):
    """
    Raised when a parameter or a field declaration is unusable.
    """


class UnresolvedParameter(BitRecordError, LookupError):
    """
    Raised when a deferred computation asks for a name that no environment in
    the chain knows about.
    """


class UnknownField(BitRecordError, AttributeError):
    """
    Raised on named access to a field that was never declared.
    """


class ValidityError(BitRecordError):
    """
    Raised when data read from a stream fails a declared check.
    """


class OffsetMismatch(ValidityError):
    pass


class ValueCheckFailed(ValidityError):
    pass


class IllegalWriteDuringRead(BitRecordError, RuntimeError):
    pass
