"""
xbase Typed Projection
======================
Reads records straight into user types and writes them back.

A projection is an explicit mapping table between a schema's descriptors
and the members of a shape (a dataclass, a typing.NamedTuple, or a plain
class with annotations). Names match case-insensitively. The shape may
declare a subset of the fields, in any order:

  - members with no matching descriptor get their declared default, or
    the zero value of their annotation (0, 0.0, "", False, b"", None)
  - descriptors with no matching member are skipped on read and written
    as their blank/zero encoding

Building a projection inspects the shape once. Projections are cached
for the life of the process, keyed by (descriptors, shape), so repeated
reads of the same table into the same type reuse one mapping table.
"""

import dataclasses
import types
from decimal import Decimal
from typing import Any, Callable, Optional, Sequence, Union, get_args, get_origin, get_type_hints

from xbase.schema import FieldDescriptor, Schema

_ZERO_VALUES: dict[Any, Any] = {
    int: 0,
    float: 0.0,
    str: "",
    bool: False,
    bytes: b"",
    Decimal: Decimal(0),
}


def zero_value(annotation: Any) -> Any:
    """Zero value for an annotation; None for optional and unknown types."""
    origin = get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        if type(None) in get_args(annotation):
            return None
        annotation = get_args(annotation)[0]
        origin = get_origin(annotation)
    if annotation in _ZERO_VALUES:
        return _ZERO_VALUES[annotation]
    container = origin or annotation
    if container in (list, dict, set, tuple):
        return container()
    return None


def _constant(value: Any) -> Callable[[], Any]:
    return lambda: value


def _members(shape: type) -> list[tuple[str, Callable[[], Any]]]:
    """(member name, default factory) for every settable member of shape."""
    hints = get_type_hints(shape)

    if dataclasses.is_dataclass(shape):
        members = []
        for f in dataclasses.fields(shape):
            if not f.init:
                continue
            if f.default is not dataclasses.MISSING:
                factory = _constant(f.default)
            elif f.default_factory is not dataclasses.MISSING:
                factory = f.default_factory
            else:
                factory = _constant(zero_value(hints.get(f.name, Any)))
            members.append((f.name, factory))
        return members

    if isinstance(shape, type) and issubclass(shape, tuple) and hasattr(shape, "_fields"):
        defaults = getattr(shape, "_field_defaults", {})
        return [
            (name, _constant(defaults[name]) if name in defaults
             else _constant(zero_value(hints.get(name, Any))))
            for name in shape._fields
        ]

    members = []
    for name, annotation in hints.items():
        if name.startswith("_"):
            continue
        if hasattr(shape, name):
            factory = _constant(getattr(shape, name))
        else:
            factory = _constant(zero_value(annotation))
        members.append((name, factory))
    return members


class TypeProjection:
    """Mapping table between one descriptor list and one shape."""

    def __init__(self, descriptors: Sequence[FieldDescriptor], shape: type):
        self.shape = shape
        by_name: dict[str, int] = {}
        for i, desc in enumerate(descriptors):
            by_name.setdefault(desc.name.lower(), i)

        self._bound: list[tuple[str, int]] = []
        self._unbound: list[tuple[str, Callable[[], Any]]] = []
        self._columns: list[Optional[str]] = [None] * len(descriptors)
        for name, factory in _members(shape):
            index = by_name.get(name.lower())
            if index is None:
                self._unbound.append((name, factory))
            else:
                self._bound.append((name, index))
                self._columns[index] = name

        self._is_record_class = dataclasses.is_dataclass(shape) or (
            issubclass(shape, tuple) and hasattr(shape, "_fields")
        )

    @property
    def bound_members(self) -> list[str]:
        return [name for name, _ in self._bound]

    @property
    def unbound_members(self) -> list[str]:
        return [name for name, _ in self._unbound]

    def from_values(self, values: Sequence[Any]) -> Any:
        """Build an instance of the shape from decoded field values."""
        kwargs = {name: values[index] for name, index in self._bound}
        for name, factory in self._unbound:
            kwargs[name] = factory()
        if self._is_record_class:
            return self.shape(**kwargs)
        obj = self.shape.__new__(self.shape)
        for name, value in kwargs.items():
            setattr(obj, name, value)
        return obj

    def to_values(self, obj: Any) -> list[Any]:
        """Field values for one instance, None where no member maps."""
        return [None if name is None else getattr(obj, name) for name in self._columns]

    def __repr__(self) -> str:
        return (
            f"TypeProjection({self.shape.__name__}, bound={self.bound_members}, "
            f"unbound={self.unbound_members})"
        )


# ─── Process-lifetime cache ─────────────────────────────────────────────────

_projections: dict[tuple[tuple[FieldDescriptor, ...], type], TypeProjection] = {}


def get_projection(schema: Schema, shape: type) -> TypeProjection:
    """Return the cached projection for (schema descriptors, shape)."""
    key = (schema.key(), shape)
    projection = _projections.get(key)
    if projection is None:
        projection = TypeProjection(schema.fields, shape)
        _projections[key] = projection
    return projection


def clear_projection_cache() -> None:
    """Drop every cached projection (for testing)."""
    _projections.clear()


def projection_cache_size() -> int:
    return len(_projections)
