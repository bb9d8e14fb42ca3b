"""Backend registry: holds descriptors and answers "which backends, in what order"."""

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType

from wallbounce.backends.base import Backend
from wallbounce.errors import ConfigurationError
from wallbounce.models import BackendKind, BackendResponse, TaskType

logger = logging.getLogger(__name__)

LIGHTWEIGHT = "lightweight"
SYNTHESIZER = "synthesizer"

# Basic tasks use the first N standard backends
_BASIC_COUNT = 2
# Simple tasks still need two opinions for quorum
_SIMPLE_MIN = 2


@dataclass(frozen=True)
class BackendDescriptor:
    key: BackendKind
    display_name: str
    model: str
    invoker: Backend
    capabilities: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_lightweight(self) -> bool:
        return LIGHTWEIGHT in self.capabilities

    @property
    def is_synthesizer(self) -> bool:
        return SYNTHESIZER in self.capabilities

    async def invoke(self, prompt: str, options: Mapping[str, object] | None = None) -> BackendResponse:
        return await self.invoker.invoke(prompt, options)


class BackendRegistry:
    """Read-only set of backends, constructed once and shared by reference.

    Registration order is priority order. Backends tagged ``synthesizer`` are
    kept out of the primary roster; the reserve list names the fallback
    backends in the order they should be tried.
    """

    def __init__(
        self,
        descriptors: Iterable[BackendDescriptor],
        reserve: Sequence[BackendKind] = (),
    ) -> None:
        entries: dict[BackendKind, BackendDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.key in entries:
                raise ConfigurationError(f"Backend '{descriptor.key.value}' registered twice")
            entries[descriptor.key] = descriptor
        if not entries:
            raise ConfigurationError("No backends registered")

        self._entries: Mapping[BackendKind, BackendDescriptor] = MappingProxyType(entries)
        self._reserve: tuple[BackendKind, ...] = tuple(k for k in reserve if k in entries)
        dropped = [k.value for k in reserve if k not in entries]
        if dropped:
            logger.info("Reserve backends not registered, ignoring: %s", ", ".join(dropped))

        logger.info(
            "Registry ready: %d backends (%s)",
            len(entries),
            ", ".join(k.value for k in entries),
        )

    @property
    def entries(self) -> Mapping[BackendKind, BackendDescriptor]:
        return self._entries

    @property
    def reserve_order(self) -> tuple[BackendKind, ...]:
        return self._reserve

    def get(self, key: BackendKind) -> BackendDescriptor | None:
        return self._entries.get(key)

    def require(self, key: BackendKind) -> BackendDescriptor:
        descriptor = self._entries.get(key)
        if descriptor is None:
            raise ConfigurationError(f"Backend '{key.value}' is not registered")
        return descriptor

    def primary_roster(self) -> list[BackendKind]:
        """Every backend that may cast a primary vote, in registration order."""
        return [k for k, d in self._entries.items() if not d.is_synthesizer]

    def select_order(self, task_type: TaskType) -> list[BackendKind]:
        """Ordered backend keys for a task classification.

        basic: first two standard backends. premium/critical: all standard
        backends. simple: lightweight backends, padded with standard ones up
        to two.
        """
        roster = self.primary_roster()
        standard = [k for k in roster if not self._entries[k].is_lightweight]
        lightweight = [k for k in roster if self._entries[k].is_lightweight]

        if task_type is TaskType.SIMPLE:
            order = list(lightweight)
            for key in standard:
                if len(order) >= _SIMPLE_MIN:
                    break
                order.append(key)
        elif task_type in (TaskType.PREMIUM, TaskType.CRITICAL):
            order = standard
        else:
            order = standard[:_BASIC_COUNT]

        logger.debug("Order for %s: %s", task_type.value, [k.value for k in order])
        return order
