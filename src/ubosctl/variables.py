"""Layered ``${key}`` variable resolution.

A :class:`Variables` instance holds one layer of values and an optional
parent. Lookups walk from the innermost layer outwards, while placeholder
expansion always starts again from the layer the caller holds. A host-level
default such as ``/ubos/share/${package.name}`` therefore picks up the
``package.name`` of whichever installable layer asks for it.
"""
from __future__ import annotations

import re
from collections.abc import Iterator, Mapping

_PLACEHOLDER = re.compile(r"\$\{([^{}]+)\}")
_MISSING = object()
MAX_DEPTH = 32


class VariablesError(RuntimeError):
    """Raised when a variable cannot be resolved."""


class Variables:
    """One layer of named values, optionally chained to a parent layer."""

    def __init__(
        self,
        name: str,
        values: Mapping[str, object] | None = None,
        parent: Variables | None = None,
    ) -> None:
        self.name = name
        self._values: dict[str, object] = dict(values or {})
        self._parent = parent

    def __repr__(self) -> str:
        chain = " > ".join(layer.name for layer in self._layers())
        return f"Variables({chain})"

    def child(self, name: str, values: Mapping[str, object] | None = None) -> Variables:
        """Return a new layer on top of this one."""
        return Variables(name, values, parent=self)

    def put(self, key: str, value: object) -> None:
        """Set *key* in this layer."""
        self._values[key] = value

    def keys(self) -> set[str]:
        """Return every key visible from this layer."""
        found: set[str] = set()
        for layer in self._layers():
            found.update(layer._values)
        return found

    def get(self, key: str, default: object | None = None) -> object | None:
        """Return the raw, unexpanded value for *key*."""
        value = self._lookup(key)
        return default if value is _MISSING else value

    def get_resolve(
        self,
        key: str,
        default: str | None = None,
        allow_missing: bool = False,
    ) -> str | None:
        """Return the expanded value for *key*.

        A missing key yields *default* when one is given, ``None`` when
        *allow_missing* is set, and raises :class:`VariablesError` otherwise.
        """
        value = self._lookup(key)
        if value is _MISSING:
            if default is not None:
                return self.replace_variables(default)
            if allow_missing:
                return None
            raise VariablesError(f"Cannot resolve variable '{key}' in {self!r}")
        return self._expand(_stringify(value), [key])

    def get_resolve_or_null(
        self,
        key: str,
        default: str | None = None,
        allow_missing: bool = True,
    ) -> str | None:
        """Like :meth:`get_resolve` but an unresolvable value yields *default*."""
        try:
            return self.get_resolve(key, default, allow_missing)
        except VariablesError:
            if allow_missing:
                return default
            raise

    def replace_variables(self, text: str | None, *, allow_missing: bool = False) -> str | None:
        """Expand all ``${key}`` placeholders in *text*.

        With *allow_missing* unknown placeholders are left untouched instead
        of raising.
        """
        if text is None:
            return None
        return self._expand(text, [], allow_missing=allow_missing)

    def as_dict(self) -> dict[str, str]:
        """Return every visible key expanded; unresolvable values stay literal."""
        resolved: dict[str, str] = {}
        for key in sorted(self.keys()):
            raw = self._lookup(key)
            resolved[key] = self._expand(_stringify(raw), [key], allow_missing=True)
        return resolved

    # ------------------------------------------------------------------
    def _layers(self) -> Iterator[Variables]:
        layer: Variables | None = self
        while layer is not None:
            yield layer
            layer = layer._parent

    def _lookup(self, key: str) -> object:
        for layer in self._layers():
            if key in layer._values:
                return layer._values[key]
        return _MISSING

    def _expand(self, text: str, stack: list[str], *, allow_missing: bool = False) -> str:
        if len(stack) > MAX_DEPTH:
            raise VariablesError(f"Variable nesting too deep: {' -> '.join(stack)}")

        def substitute(match: re.Match[str]) -> str:
            key = match.group(1).strip()
            if key in stack:
                raise VariablesError(f"Circular variable reference: {' -> '.join([*stack, key])}")
            value = self._lookup(key)
            if value is _MISSING:
                if allow_missing:
                    return match.group(0)
                raise VariablesError(f"Cannot resolve variable '{key}' in {self!r}")
            return self._expand(_stringify(value), [*stack, key], allow_missing=allow_missing)

        return _PLACEHOLDER.sub(substitute, text)


def _stringify(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else ""
    return str(value)


def has_placeholder(text: str) -> bool:
    """Return True when *text* contains at least one ``${...}`` placeholder."""
    return bool(_PLACEHOLDER.search(text))


__all__ = ["Variables", "VariablesError", "has_placeholder"]
