"""Bounded fixed-interval polling shared by the registration waits."""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")

Probe = Callable[[], Union[Optional[T], Awaitable[Optional[T]]]]
Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int
    interval: float

    @property
    def ceiling(self) -> float:
        return self.max_attempts * self.interval


class PollExhausted(Exception):
    def __init__(self, policy: RetryPolicy, label: str = "poll"):
        self.policy = policy
        self.label = label
        super().__init__(
            f"{label}: gave up after {policy.max_attempts} attempts ({policy.ceiling:.1f}s)"
        )


async def _run_probe(probe: Probe) -> Any:
    value = probe()
    if asyncio.iscoroutine(value):
        value = await value
    return value


async def poll(
    probe: Probe,
    policy: RetryPolicy,
    sleep: Sleep = asyncio.sleep,
    label: str = "poll",
) -> T:
    """Probe once, then up to ``max_attempts`` more times ``interval`` apart.

    Returns the first truthy probe result. Exceptions raised by the probe
    propagate unchanged.
    """
    value = await _run_probe(probe)
    attempts = 0
    while not value and attempts < policy.max_attempts:
        await sleep(policy.interval)
        value = await _run_probe(probe)
        attempts += 1
    if not value:
        logger.info(f"{label}: exhausted after {attempts} retries")
        raise PollExhausted(policy, label)
    if attempts:
        logger.debug(f"{label}: satisfied after {attempts} retries")
    return value
