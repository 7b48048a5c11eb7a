"""Ordered provider fallback.

Each capability (geocoding, routing) keeps a list of provider objects that
expose ``attempt(...) -> ProviderResult``. The chain returns the first
success; a provider that raises ``ProviderError`` or reports an error is
logged and skipped. Anything else (``RateLimitExceeded`` included)
propagates.
"""

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Generic, Optional, Protocol, TypeVar

from meetpoint.exceptions import ProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")
P = TypeVar("P", bound="NamedProvider")


class NamedProvider(Protocol):
    name: str


@dataclass
class ProviderResult(Generic[T]):
    """Outcome of one provider attempt."""
    provider: str
    value: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.value is not None


@dataclass
class ChainOutcome(Generic[T]):
    value: Optional[T] = None
    provider: Optional[str] = None
    errors: list[str] = field(default_factory=list)


async def run_provider_chain(
    providers: Sequence[P],
    call: Callable[[P], Awaitable[ProviderResult[T]]],
    tag: str,
) -> ChainOutcome[T]:
    """Try providers in order until one succeeds."""
    outcome: ChainOutcome[T] = ChainOutcome()

    for provider in providers:
        try:
            result = await call(provider)
        except ProviderError as e:
            result = ProviderResult(provider=provider.name, error=str(e))

        if result.ok:
            outcome.value = result.value
            outcome.provider = result.provider
            return outcome

        reason = result.error or "empty result"
        logger.warning(f"[{tag}] {provider.name} failed: {reason}")
        outcome.errors.append(f"{provider.name}: {reason}")

    return outcome
