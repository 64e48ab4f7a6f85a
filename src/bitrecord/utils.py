from __future__ import annotations

import typing as t


class NotProvided:
    def __repr__(self) -> str:
        return "NOT_PROVIDED"


NOT_PROVIDED = NotProvided()

_T = t.TypeVar("_T")


def is_provided(x: _T | NotProvided) -> t.TypeGuard[_T]:
    return x is not NOT_PROVIDED


def bit_mask(n: int) -> int:
    return (1 << n) - 1


def is_it_too_big(value: int, n: int, signed: bool) -> bool:
    if signed:
        return not -(1 << (n - 1)) <= value < (1 << (n - 1))
    return not 0 <= value < (1 << n)


def span_bytes(n_bits: int) -> int:
    return (n_bits + 7) // 8


def read_exact(stream: t.BinaryIO, n: int) -> bytes:
    """ Reads exactly `n` bytes from `stream`.

    Raises:
        EOFError: if the stream ends before `n` bytes were read.
    """
    data = stream.read(n) if n else b""
    if len(data) != n:
        raise EOFError(
            f"Unexpected end of stream (expected {n} bytes, got {len(data)})"
        )
    return data


def stream_position(stream: t.Any) -> int | None:
    tell = getattr(stream, "tell", None)
    if tell is None:
        return None
    try:
        return tell()
    except OSError:
        # unseekable streams (pipes, sockets)
        return None
