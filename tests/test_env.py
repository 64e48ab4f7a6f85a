import re

import pytest

from bitrecord import (
    BitField,
    Deferred,
    Environment,
    lazy,
    UnresolvedParameter,
)


class Owner:
    def __init__(self, **values: int):
        self.values = values

    def has_field(self, name: str) -> bool:
        return name in self.values

    def value_of(self, name: str) -> int:
        return self.values[name]


def test_plain_values():
    env = Environment({"a": 1})
    assert env.resolve("a") == 1
    assert env.evaluate(5) == 5

    fn = lambda: 1  # noqa: E731
    assert env.evaluate(fn) is fn


def test_deferred():
    env = Environment({"a": 1, "b": lazy(lambda env: env.a + 1)})
    assert env.resolve("b") == 2
    assert env.evaluate(lazy(lambda env: env.b * 10)) == 20
    assert env.evaluate(lazy(lambda: 3)) == 3
    assert env.evaluate(lazy(lambda env: env["a"])) == 1


def test_lazy_arity():
    with pytest.raises(ValueError, match=re.escape("unsupported number of parameters: 2")):
        lazy(lambda a, b: 0)

    assert isinstance(lazy(lambda: 0), Deferred)


def test_parent_chain():
    root = Environment({"a": 1, "shared": "root"})
    child = root.child({"shared": "child"})

    assert child.resolve("a") == 1
    assert child.resolve("shared") == "child"
    assert root.resolve("shared") == "root"


def test_owner_fields():
    root = Environment({"a": 1}, owner=Owner(x=7))
    child = root.child(owner=Owner())

    assert child.resolve("x") == 7
    assert child.evaluate(lazy(lambda env: env.x + env.a)) == 8


def test_bindings():
    env = Environment({"a": 1}).child()
    assert env.evaluate(lazy(lambda env: env.offset - env.a), offset=5) == 4

    # bindings shadow parameters of the same name
    assert env.evaluate(lazy(lambda env: env.a), a=2) == 2


def test_unresolved():
    env = Environment({"a": 1}).child()

    with pytest.raises(UnresolvedParameter, match=re.escape("no parameter or field named 'b'")):
        env.resolve("b")

    with pytest.raises(LookupError):
        env.evaluate(lazy(lambda env: env.b))


def test_params_are_read_only():
    params = {"a": 1}
    env = Environment(params)
    params["a"] = 2
    assert env.resolve("a") == 1

    with pytest.raises(TypeError):
        env.params["a"] = 3  # type: ignore


def test_member_environment_chain():
    bf = BitField(fields=[("a", 4, {"flag": 1}), ("b", 4)], header_size=2)
    member = bf.field("a").env

    assert member.parent is bf.env
    assert member.resolve("flag") == 1
    assert member.resolve("header_size") == 2
    assert bf.env.params.get("flag") is None
