"""Environment expanders: layered providers of environment overrides.

An expander is handed a working environment (a plain dict) and writes its
overrides into it. Nested scopes are modelled by merging the ambient expander
with a new one, so the innermost scope is applied last and wins on conflicts.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from types import MappingProxyType


class EnvironmentExpander(ABC):
    """Applies overrides to a working environment."""

    @abstractmethod
    def expand(self, env: dict[str, str]) -> None:
        """Write this expander's overrides into env in place."""


class OverlayExpander(EnvironmentExpander):
    """Expander backed by a fixed set of overrides."""

    def __init__(self, overrides: Mapping[str, str]) -> None:
        self._overrides = MappingProxyType(dict(overrides))

    @property
    def keys(self) -> list[str]:
        return list(self._overrides)

    def expand(self, env: dict[str, str]) -> None:
        env.update(self._overrides)

    def __repr__(self) -> str:
        # Values may hold secrets
        return f"OverlayExpander(keys={self.keys!r})"


class MergedExpander(EnvironmentExpander):
    """Applies original first, then subsequent on top of it."""

    def __init__(
        self, original: EnvironmentExpander, subsequent: EnvironmentExpander
    ) -> None:
        self.original = original
        self.subsequent = subsequent

    def expand(self, env: dict[str, str]) -> None:
        self.original.expand(env)
        self.subsequent.expand(env)

    def __repr__(self) -> str:
        return f"MergedExpander({self.original!r}, {self.subsequent!r})"


def merge(
    original: EnvironmentExpander | None,
    subsequent: EnvironmentExpander | None,
) -> EnvironmentExpander | None:
    """Layer subsequent over original. Neither operand is modified."""
    if original is None:
        return subsequent
    if subsequent is None:
        return original
    return MergedExpander(original, subsequent)


def expand_environment(
    expander: EnvironmentExpander | None,
    base: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Return a fresh copy of base with the expander applied."""
    env = dict(base or {})
    if expander is not None:
        expander.expand(env)
    return env
