from .core import (
    Field,
    Bit,
    BitField,
    BitFieldConfig,
    FieldSpec,
    field_specs,
)

from .env import (
    Deferred,
    Environment,
    EnvProxy,
    lazy,
)

from .errors import (
    BitRecordError,
    MissingParameter,
    InvalidParameter,
    UnresolvedParameter,
    UnknownField,
    ValidityError,
    OffsetMismatch,
    ValueCheckFailed,
    IllegalWriteDuringRead,
)

__all__ = [
    "Field",
    "Bit",
    "BitField",
    "BitFieldConfig",
    "FieldSpec",
    "field_specs",
    "Deferred",
    "Environment",
    "EnvProxy",
    "lazy",
    "BitRecordError",
    "MissingParameter",
    "InvalidParameter",
    "UnresolvedParameter",
    "UnknownField",
    "ValidityError",
    "OffsetMismatch",
    "ValueCheckFailed",
    "IllegalWriteDuringRead",
]
