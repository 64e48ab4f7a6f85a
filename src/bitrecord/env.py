from __future__ import annotations

import inspect
import typing as t
from types import MappingProxyType

from .errors import UnresolvedParameter


class Deferred(t.NamedTuple):
    fn: t.Callable[..., t.Any]


def lazy(fn: t.Callable[..., t.Any]) -> Deferred:
    """ Marks a parameter value as computed on demand.

    The callable takes either no arguments or a single argument, an
    `EnvProxy` through which the names visible to the field can be read as
    attributes (its own extra parameters, the values of sibling fields,
    parameters of enclosing containers, and the transient `offset`/`value`
    bindings of the check being evaluated).

    Example:
        ```python
        bf = BitField(
            fields=[
                ("kind", 4),
                ("body", 4, {"check_value": lazy(lambda env: env.kind != 0)}),
            ],
        )
        ```
    """
    n_params = len(inspect.signature(fn).parameters)
    if n_params > 1:
        raise ValueError(f"unsupported number of parameters: {n_params}")
    return Deferred(fn)


class FieldOwner(t.Protocol):
    def has_field(self, name: str) -> bool: ...
    def value_of(self, name: str) -> t.Any: ...


class Environment:
    """
    One link of the parameter resolution chain.

    Holds the extra (type-unrecognised) parameters of one field, the field
    itself as `owner`, and the environment of the enclosing container as
    `parent`. Fixed once constructed.
    """
    __slots__ = ("params", "parent", "owner")

    def __init__(
        self,
        params: t.Mapping[str, t.Any] | None = None,
        parent: Environment | None = None,
        owner: FieldOwner | None = None,
    ):
        self.params: t.Mapping[str, t.Any] = MappingProxyType(dict(params or {}))
        self.parent = parent
        self.owner = owner

    def child(
        self,
        params: t.Mapping[str, t.Any] | None = None,
        owner: FieldOwner | None = None,
    ) -> Environment:
        return Environment(params, parent=self, owner=owner)

    def evaluate(self, raw: t.Any, **bindings: t.Any) -> t.Any:
        if not isinstance(raw, Deferred):
            return raw

        match len(inspect.signature(raw.fn).parameters):
            case 0:
                return raw.fn()
            case _:
                return raw.fn(EnvProxy(self, bindings))

    def resolve(self, name: str, bindings: t.Mapping[str, t.Any] | None = None) -> t.Any:
        bindings = bindings or {}

        if name in bindings:
            return bindings[name]

        if name in self.params:
            return self.evaluate(self.params[name], **bindings)

        if self.owner is not None and self.owner.has_field(name):
            return self.owner.value_of(name)

        if self.parent is not None:
            return self.parent.resolve(name, bindings)

        raise UnresolvedParameter(f"no parameter or field named {name!r}")

    def __repr__(self) -> str:
        return f"Environment(params={dict(self.params)!r}, parent={self.parent!r})"


class EnvProxy:
    """ Attribute-style view of an `Environment` handed to deferred values. """
    __slots__ = ("_env", "_bindings")

    def __init__(self, env: Environment, bindings: t.Mapping[str, t.Any]):
        self._env = env
        self._bindings = bindings

    def __getattr__(self, name: str) -> t.Any:
        if name.startswith("__"):
            raise AttributeError(name)
        return self._env.resolve(name, self._bindings)

    def __getitem__(self, name: str) -> t.Any:
        return self._env.resolve(name, self._bindings)
