"""Configuration errors raised while building a field schema."""

from __future__ import annotations


class ConfigError(ValueError):
    """A field declaration cannot be turned into a usable schema."""


class DuplicateFieldError(ConfigError):
    def __init__(self, name: str) -> None:
        super().__init__(f"field {name!r} is declared more than once")
        self.name = name


class CyclicDependencyError(ConfigError):
    def __init__(self, cycle: list[str]) -> None:
        super().__init__("cyclic depends_on: " + " -> ".join(cycle))
        self.cycle = cycle
