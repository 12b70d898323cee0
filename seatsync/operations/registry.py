"""
Operation registry - explicit operation name → handling rules.

Every operation the client can run is registered up front. Calling an
unregistered name raises UnknownOperationError.
"""

from dataclasses import dataclass
from typing import Iterable

from loguru import logger

from seatsync.services.errors import UnknownOperationError


@dataclass(frozen=True)
class OperationSpec:
    """How one operation is routed, cached and queued."""

    name: str
    mutating: bool = False
    invalidates: tuple[str, ...] = ()  # read operations purged on success
    secondary_name: str | None = None  # name on the legacy backend, if different
    allow_fallback: bool = True
    queue_offline: bool | None = None  # defaults to `mutating`
    cacheable: bool = True
    timeout: float | None = None  # overrides the transport default

    @property
    def secondary_operation(self) -> str:
        return self.secondary_name or self.name

    @property
    def queueable(self) -> bool:
        if self.queue_offline is None:
            return self.mutating
        return self.queue_offline

    @property
    def use_cache(self) -> bool:
        return self.cacheable and not self.mutating


class OperationRegistry:
    """
    Usage:
        registry = OperationRegistry()
        registry.register(OperationSpec("getSeatData"))
        spec = registry.get("getSeatData")
    """

    def __init__(self, specs: Iterable[OperationSpec] = ()):
        self._specs: dict[str, OperationSpec] = {}
        for spec in specs:
            self.register(spec)

    def register(self, spec: OperationSpec, replace: bool = False) -> None:
        if spec.name in self._specs and not replace:
            raise ValueError(f"Operation '{spec.name}' is already registered")
        for target in spec.invalidates:
            if target == spec.name:
                raise ValueError(f"Operation '{spec.name}' cannot invalidate itself")
        self._specs[spec.name] = spec
        logger.debug(f"Registered operation: {spec.name}")

    def get(self, name: str) -> OperationSpec:
        try:
            return self._specs[name]
        except KeyError:
            raise UnknownOperationError(name) from None

    def __contains__(self, name: str) -> bool:
        return name in self._specs

    def __len__(self) -> int:
        return len(self._specs)

    def names(self) -> list[str]:
        return list(self._specs)

    def mutating(self) -> list[OperationSpec]:
        return [spec for spec in self._specs.values() if spec.mutating]

    def invalidation_table(self) -> dict[str, tuple[str, ...]]:
        """Mutating operation → read prefixes it purges."""
        return {
            spec.name: spec.invalidates
            for spec in self._specs.values()
            if spec.invalidates
        }
