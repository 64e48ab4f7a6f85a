from __future__ import annotations

import logging
import typing as t
from dataclasses import dataclass
from io import BytesIO

from typing_extensions import Self

from .env import Deferred, Environment
from .errors import (
    BitRecordError,
    MissingParameter,
    InvalidParameter,
    UnknownField,
    OffsetMismatch,
    ValueCheckFailed,
    IllegalWriteDuringRead,
)
from .utils import (
    NOT_PROVIDED,
    NotProvided,
    is_provided,
    is_it_too_big,
    bit_mask,
    span_bytes,
    read_exact,
    stream_position,
)

logger = logging.getLogger(__name__)


def _is_plain_int(x: t.Any) -> bool:
    return isinstance(x, int) and not isinstance(x, bool)


def _check_fits(value: t.Any, n: int, what: str = "value"):
    if not _is_plain_int(value):
        raise TypeError(f"expected int, got {type(value).__name__}")
    if is_it_too_big(value, n, signed=False):
        raise ValueError(f"expected {what} to fit in {n} bits, got {value}")


def _expectation_met(expected: t.Any, actual: int) -> bool:
    # `True` always passes, `False`/`None` always fail, anything else is compared
    if expected is None or isinstance(expected, bool):
        return bool(expected)
    return expected == actual


class Field:
    """
    Base class for all data objects.

    Subclasses must implement `clear`, `snapshot`, `_do_read`, `_write` and
    `_num_bytes`, and spell out which parameters they understand in
    `mandatory_parameters` and `optional_parameters`. Parameters that a type
    does not understand are kept as extra parameters of the field's
    `Environment`, where deferred values can refer to them by name.

    Parameters understood by every field:

        check_offset: checked before reading. `True` always passes, `False`
            always fails, any other result must equal the number of bytes
            between the position where the top level `read` started and the
            current one.
            May be deferred; the computed offset is bound as `offset`.

        readwrite: if `False`, `read` and `write` perform no I/O and
            `num_bytes` is 0. Defaults to `True`.
    """
    mandatory_parameters: t.ClassVar[t.Tuple[str, ...]] = ()
    optional_parameters: t.ClassVar[t.Tuple[str, ...]] = (
        "check_offset",
        "readwrite",
    )

    def __init__(
        self,
        params: t.Mapping[str, t.Any] | None = None,
        parent: Environment | None = None,
        **kwargs: t.Any,
    ):
        params = {**(params or {}), **kwargs}
        params.setdefault("readwrite", True)

        for name in self.mandatory_parameters:
            if name not in params:
                raise MissingParameter(
                    f"parameter {name!r} must be specified in {self.__class__.__name__}"
                )

        known = self.parameters()
        own: t.Dict[str, t.Any] = {}
        extra: t.Dict[str, t.Any] = {}

        for key, value in params.items():
            if value is None:
                raise InvalidParameter(
                    f"parameter {key!r} is None in {self.__class__.__name__}"
                )
            if key in known:
                own[key] = value
            else:
                extra[key] = value

        self._params = own
        if parent is None:
            self._env = Environment(extra, owner=self)
        else:
            self._env = parent.child(extra, owner=self)

    @classmethod
    def parameters(cls) -> t.Tuple[str, ...]:
        return cls.mandatory_parameters + tuple(
            p for p in cls.optional_parameters if p not in cls.mandatory_parameters
        )

    @property
    def env(self) -> Environment:
        return self._env

    def has_param(self, key: str) -> bool:
        return key in self._params

    def param(self, key: str) -> t.Any:
        """ The raw, unevaluated parameter, or `None` if it was not given. """
        return self._params.get(key)

    def eval_param(self, key: str, **bindings: t.Any) -> t.Any:
        return self._env.evaluate(self._params.get(key), **bindings)

    def ensure_mutual_exclusion(self, first: str, second: str):
        if self.has_param(first) and self.has_param(second):
            raise InvalidParameter(
                f"params {first!r} and {second!r} are mutually exclusive"
            )

    def has_field(self, name: str) -> bool:
        return False

    def value_of(self, name: str) -> t.Any:
        raise UnknownField(f"{self.__class__.__name__} has no field {name!r}")

    @property
    def readwrite(self) -> bool:
        return self.eval_param("readwrite") is not False

    def read(self, stream: t.BinaryIO) -> Self:
        """ Reads this object from `stream`, then runs the `done_read` hook. """
        mark = stream_position(stream)
        try:
            self.do_read(stream, mark)
        finally:
            self.done_read()
        return self

    def do_read(self, stream: t.BinaryIO, mark: int | None):
        self.clear()
        self.check_offset(stream_position(stream), mark)
        if self.readwrite:
            self._do_read(stream, mark)

    def done_read(self):
        pass

    def write(self, stream: t.BinaryIO):
        if self.readwrite:
            self._write(stream)

    def num_bytes(self) -> int:
        return self._num_bytes() if self.readwrite else 0

    def check_offset(self, position: int | None, mark: int | None):
        if not self.has_param("check_offset"):
            return

        if position is None or mark is None:
            raise OffsetMismatch("stream position is unavailable, cannot check offset")

        offset = position - mark
        expected = self.eval_param("check_offset", offset=offset)

        if _expectation_met(expected, offset):
            return

        if expected is None or isinstance(expected, bool):
            raise OffsetMismatch("offset not as expected")
        raise OffsetMismatch(f"offset is {offset} but expected {expected!r}")

    def to_bytes(self) -> bytes:
        stream = BytesIO()
        self.write(stream)
        return stream.getvalue()

    def read_bytes(self, data: t.ByteString, exact: bool = True) -> Self:
        stream = BytesIO(bytes(data))
        self.read(stream)

        remaining = len(data) - stream.tell()
        if exact and remaining:
            raise ValueError(
                f"Bytes left over after reading {self.__class__.__name__} ({remaining})"
            )

        return self

    def clear(self):  # pragma: nocover
        raise NotImplementedError

    def snapshot(self) -> t.Any:  # pragma: nocover
        raise NotImplementedError

    def _do_read(self, stream: t.BinaryIO, mark: int | None):  # pragma: nocover
        raise NotImplementedError

    def _write(self, stream: t.BinaryIO):  # pragma: nocover
        raise NotImplementedError

    def _num_bytes(self) -> int:  # pragma: nocover
        raise NotImplementedError


class Bit(Field):
    """ An unsigned integer of arbitrary bit length.

    The value may begin `bit_offset` bits above the least significant bit of
    the first byte it occupies. With offset 2 and length 10 in a pair of
    bytes:

        0000100000001100
            |--------|

    the value is 0b1000000011 = 0x203.

    Inside a `BitField` the partially filled byte shared with the neighbouring
    member (the carry) is passed in and handed back by `read_carry` and
    `write_carry`. Used on its own, a Bit is big-endian over its
    `ceil((bit_offset + bit_length) / 8)` bytes.

    Parameters:

        bit_offset: position of the value's least significant bit, 0 to 7.

        bit_length: number of bits, at least 1.

        initial_value: value after construction and after `clear`.

        value: fixes the value; assignment is rejected. Between `do_read` and
            `done_read` the value read from the stream is reported instead.

        check_value: checked after reading. `True` passes, `False` fails, any
            other result is compared to the value read (bound as `value`).
    """
    mandatory_parameters = ("bit_offset", "bit_length")
    optional_parameters = (
        "check_offset",
        "readwrite",
        "initial_value",
        "value",
        "check_value",
    )

    def __init__(
        self,
        params: t.Mapping[str, t.Any] | None = None,
        parent: Environment | None = None,
        **kwargs: t.Any,
    ):
        super().__init__(params, parent, **kwargs)
        self.ensure_mutual_exclusion("initial_value", "value")

        bit_length = self.param("bit_length")
        if not isinstance(bit_length, Deferred):
            if not _is_plain_int(bit_length) or bit_length < 1:
                raise InvalidParameter(
                    f"bit_length must be a positive int, got {bit_length!r}"
                )

            for name in ("initial_value", "value"):
                default = self.param(name)
                if default is not None and not isinstance(default, Deferred):
                    _check_fits(default, bit_length, name)

        bit_offset = self.param("bit_offset")
        if not isinstance(bit_offset, Deferred):
            if not _is_plain_int(bit_offset) or not 0 <= bit_offset <= 7:
                raise InvalidParameter(
                    f"bit_offset must be an int from 0 to 7, got {bit_offset!r}"
                )

        self._value: int | NotProvided = NOT_PROVIDED
        self._in_read = False

    @property
    def bit_length(self) -> int:
        return self.eval_param("bit_length")

    @property
    def bit_offset(self) -> int:
        return self.eval_param("bit_offset")

    def sensible_default(self) -> int:
        if self.has_param("value"):
            return self.eval_param("value")
        if self.has_param("initial_value"):
            return self.eval_param("initial_value")
        return 0

    @property
    def value(self) -> int:
        if is_provided(self._value):
            return self._value
        return self.sensible_default()

    @value.setter
    def value(self, value: int):
        if self.has_param("value"):
            raise ValueError("value is fixed by the 'value' parameter")
        _check_fits(value, self.bit_length)
        self._value = value

    def clear(self):
        self._value = NOT_PROVIDED
        self._in_read = False

    def snapshot(self) -> int:
        return self.value

    def done_read(self):
        self._in_read = False
        if self.has_param("value"):
            self._value = NOT_PROVIDED

    def read_carry(
        self,
        window: t.BinaryIO,
        carry: int | None,
        position: int | None,
        mark: int | None,
    ) -> int | None:
        """ Reads this member from a container's byte window.

        Returns the carry for the next member.
        """
        self.clear()
        self.check_offset(position, mark)
        if not self.readwrite:
            return carry
        return self._decode(window, carry)

    def write_carry(self, out: bytearray, carry: int | None) -> int | None:
        """ Appends the complete bytes of this member to `out`.

        Returns the incomplete last byte, if any, for the next member to
        finish.
        """
        if not self.readwrite:
            return carry
        return self._encode(out, carry)

    def _decode(self, window: t.BinaryIO, carry: int | None) -> int:
        bit_offset = self.bit_offset
        bit_length = self.bit_length
        n_bytes = span_bytes(bit_length + bit_offset)

        if bit_offset > 0 and carry is not None:
            data = bytes((carry,)) + read_exact(window, n_bytes - 1)
        else:
            data = read_exact(window, n_bytes)

        value = (int.from_bytes(data, "little") >> bit_offset) & bit_mask(bit_length)

        self._value = value
        self._in_read = True
        self._check_value(value)

        # the next member shifts out the bits consumed here
        return data[-1]

    def _check_value(self, value: int):
        if not self.has_param("check_value"):
            return

        expected = self.eval_param("check_value", value=value)

        if _expectation_met(expected, value):
            return

        if expected is None or isinstance(expected, bool):
            raise ValueCheckFailed("value not as expected")
        raise ValueCheckFailed(f"value is {value} but expected {expected!r}")

    def _encode(self, out: bytearray, carry: int | None) -> int | None:
        if self._in_read:
            raise IllegalWriteDuringRead("can't write whilst reading")

        bit_offset = self.bit_offset
        bit_length = self.bit_length
        value = self.value
        _check_fits(value, bit_length)

        n_bytes = span_bytes(bit_length + bit_offset)
        data = bytearray((value << bit_offset).to_bytes(n_bytes, "little"))

        # Bring in the bits of the previous member sharing our first byte
        if bit_offset != 0 and carry is not None:
            data[0] |= carry

        # A last byte we don't fill belongs to the next member as well
        pending = None
        if (bit_offset + bit_length) % 8 != 0:
            pending = data.pop()

        out.extend(data)
        return pending

    def _do_read(self, stream: t.BinaryIO, mark: int | None):
        window = BytesIO(read_exact(stream, self._num_bytes())[::-1])
        self._decode(window, None)

    def _write(self, stream: t.BinaryIO):
        scratch = bytearray()
        pending = self._encode(scratch, None)
        if pending is not None:
            scratch.append(pending)
        scratch.reverse()
        stream.write(bytes(scratch))

    def _num_bytes(self) -> int:
        return span_bytes(self.bit_length + self.bit_offset)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(bit_length={self.param('bit_length')!r}, "
            f"bit_offset={self.param('bit_offset')!r}, value={self.value!r})"
        )


class FieldSpec(t.NamedTuple):
    name: str
    bit_length: int
    params: t.Mapping[str, t.Any]


def field_specs(declarations: t.Any) -> t.List[FieldSpec]:
    """ Validates `BitField` member declarations.

    Each declaration is `(name, bit_length)` or `(name, bit_length, params)`.
    """
    if isinstance(declarations, (Deferred, str, bytes)) or not isinstance(declarations, t.Sequence):
        raise InvalidParameter(
            f"expected a sequence of field declarations, got {declarations!r}"
        )

    specs: t.List[FieldSpec] = []
    seen: t.Set[str] = set()

    for declaration in declarations:
        if not isinstance(declaration, (tuple, list)) or len(declaration) not in (2, 3):
            raise InvalidParameter(
                f"expected (name, bit_length[, params]), got {declaration!r}"
            )

        name, bit_length, *rest = declaration
        params = rest[0] if rest else {}

        if not isinstance(name, str) or not name.isidentifier() or name.startswith("_"):
            raise InvalidParameter(f"invalid field name {name!r}")
        if hasattr(BitField, name):
            raise InvalidParameter(
                f"field name {name!r} clashes with a BitField attribute"
            )
        if name in seen:
            raise InvalidParameter(f"duplicate field name {name!r}")
        if not _is_plain_int(bit_length) or bit_length < 1:
            raise InvalidParameter(
                f"bit length of {name!r} must be a positive int, got {bit_length!r}"
            )
        if params is None:
            params = {}
        if not isinstance(params, t.Mapping):
            raise InvalidParameter(
                f"params of {name!r} must be a mapping, got {params!r}"
            )
        for reserved in ("bit_length", "bit_offset"):
            if reserved in params:
                raise InvalidParameter(
                    f"{reserved!r} of {name!r} is assigned by the BitField"
                )

        seen.add(name)
        specs.append(FieldSpec(name, bit_length, dict(params)))

    return specs


@dataclass()
class BitFieldConfig:
    reverse_bytes: bool = True


class BitField(Field):
    """ A container for Bit values.

    The whole field is big-endian: the most significant byte is transmitted
    first. Members are laid out from the least significant bit upwards in
    declaration order, and a member's values may straddle byte boundaries.
    The members are expected to add up to a multiple of 8 bits; a partial
    final byte is zero-padded.

    Args:
        fields: member declarations, `(name, bit_length)` or
            `(name, bit_length, params)`. See `Bit` for the member parameters.

    Example:
        ```python
        bf = BitField(fields=[
            ("a", 4, {"initial_value": 0xC}),
            ("b", 3, {"initial_value": 0x5}),
            ("c", 1),
        ])
        print(bf) # BitField(a=12, b=5, c=0)
        print(bf.to_bytes()) # b'\\x5c'

        bf.read_bytes(b'\\xa3')
        print(bf.snapshot()) # {'a': 3, 'b': 2, 'c': 1}
        ```
    """
    mandatory_parameters = ("fields",)
    optional_parameters = ("check_offset", "readwrite")

    bitfield_config: t.ClassVar[BitFieldConfig] = BitFieldConfig()

    def __init__(
        self,
        params: t.Mapping[str, t.Any] | None = None,
        parent: Environment | None = None,
        **kwargs: t.Any,
    ):
        super().__init__(params, parent, **kwargs)

        self._fields: t.Dict[str, Bit] = {}

        bit_offset = 0
        for spec in field_specs(self.param("fields")):
            try:
                self._fields[spec.name] = Bit(
                    {
                        **spec.params,
                        "bit_length": spec.bit_length,
                        "bit_offset": bit_offset,
                    },
                    self._env,
                )
            except BitRecordError as e:
                e.push_stack(spec.name)
                raise
            except (TypeError, ValueError) as e:
                raise type(e)(
                    f"in definition of field {spec.name!r}: {str(e)}"
                ) from e

            bit_offset = (bit_offset + spec.bit_length) % 8

    def field_names(self) -> t.Tuple[str, ...]:
        return tuple(self._fields)

    def has_field(self, name: str) -> bool:
        return name in self._fields

    def field(self, name: str) -> Bit:
        try:
            return self._fields[name]
        except KeyError:
            raise UnknownField(
                f"{self.__class__.__name__} has no field {name!r}"
            ) from None

    def value_of(self, name: str) -> int:
        return self.field(name).value

    def set_value(self, name: str, value: int):
        self.field(name).value = value

    def __getattr__(self, name: str) -> t.Any:
        fields = self.__dict__.get("_fields")
        if fields is not None and name in fields:
            return fields[name].value
        raise UnknownField(f"{self.__class__.__name__} has no field {name!r}")

    def __setattr__(self, name: str, value: t.Any):
        if name.startswith("_"):
            super().__setattr__(name, value)
        else:
            self.set_value(name, value)

    def clear(self, name: str | None = None):
        if name is None:
            for bit in self._fields.values():
                bit.clear()
        else:
            self.field(name).clear()

    def snapshot(self) -> t.Dict[str, int]:
        return {name: bit.snapshot() for name, bit in self._fields.items()}

    def _num_bytes(self) -> int:
        return span_bytes(sum(bit.bit_length for bit in self._fields.values()))

    def _do_read(self, stream: t.BinaryIO, mark: int | None):
        start = stream_position(stream)
        data = read_exact(stream, self._num_bytes())

        if self.bitfield_config.reverse_bytes:
            data = data[::-1]

        logger.debug("%s: reading window %s", self.__class__.__name__, data.hex())

        window = BytesIO(data)
        carry: int | None = None
        for name, bit in self._fields.items():
            position = None if start is None else start + window.tell()
            try:
                carry = bit.read_carry(window, carry, position, mark)
            except BitRecordError as e:
                e.push_stack(name)
                raise
            logger.debug("%s.%s: read %d, carry %r", self.__class__.__name__, name, bit.value, carry)

    def done_read(self):
        for bit in self._fields.values():
            bit.done_read()

    def _write(self, stream: t.BinaryIO):
        scratch = bytearray()
        carry: int | None = None
        for name, bit in self._fields.items():
            try:
                carry = bit.write_carry(scratch, carry)
            except BitRecordError as e:
                e.push_stack(name)
                raise
            logger.debug("%s.%s: wrote %d, carry %r", self.__class__.__name__, name, bit.value, carry)

        # flush the incomplete last byte, zero-extended
        if carry is not None:
            scratch.append(carry)

        n_bytes = self._num_bytes()
        if len(scratch) < n_bytes:
            scratch.extend(bytes(n_bytes - len(scratch)))

        if self.bitfield_config.reverse_bytes:
            scratch.reverse()

        logger.debug("%s: writing window %s", self.__class__.__name__, scratch.hex())
        stream.write(bytes(scratch))

    def __repr__(self) -> str:
        return "".join((
            self.__class__.__name__,
            "(",
            ", ".join(
                f"{name}={bit.value!r}" for name, bit in self._fields.items()
            ),
            ")",
        ))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, self.__class__):
            return False

        return (
            self.field_names() == other.field_names()
            and self.snapshot() == other.snapshot()
        )
