"""Thread-safe registry of account_id -> pending registration flow."""
import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from app.config import settings
from app.modules.registration.flow import RegistrationFlow

logger = logging.getLogger(__name__)


@dataclass
class PendingRegistration:
    flow: RegistrationFlow
    task: Optional[asyncio.Task] = None
    subscription: Any = None
    created_at: float = field(default_factory=time.monotonic)


_lock = threading.Lock()
_registry: dict[str, PendingRegistration] = {}


def register(account_id: str, flow: RegistrationFlow) -> PendingRegistration:
    prune()
    entry = PendingRegistration(flow=flow)
    with _lock:
        previous = _registry.get(account_id)
        _registry[account_id] = entry
    if previous is not None:
        _release(account_id, previous)
    logger.debug(f"Registered pending registration {account_id}")
    return entry


def get(account_id: str) -> Optional[PendingRegistration]:
    with _lock:
        return _registry.get(account_id)


def unregister(account_id: str) -> None:
    with _lock:
        entry = _registry.pop(account_id, None)
    if entry is not None:
        _release(account_id, entry)
        logger.debug(f"Unregistered pending registration {account_id}")


def prune(max_age: Optional[float] = None, now: Optional[float] = None) -> int:
    """Drop registrations older than ``max_age`` seconds, abandoned or not."""
    max_age = settings.pending_registration_ttl if max_age is None else max_age
    now = time.monotonic() if now is None else now
    with _lock:
        expired = [(k, e) for k, e in _registry.items() if now - e.created_at >= max_age]
        for account_id, _ in expired:
            del _registry[account_id]
    for account_id, entry in expired:
        _release(account_id, entry)
        logger.info(f"Evicted stale pending registration {account_id} ({entry.flow.state.value})")
    return len(expired)


def start_confirmation_watch(account_id: str, entry: PendingRegistration) -> asyncio.Task:
    """Run the session poll in the background and log auth events as they arrive."""
    def _on_auth_event(event: str, session) -> None:
        logger.info(f"Registration {account_id}: auth event {event} (session={'yes' if session else 'no'})")

    try:
        entry.subscription = entry.flow.identity.subscribe(_on_auth_event)
    except Exception as e:
        logger.warning(f"Could not subscribe to auth events for {account_id}: {e}")
    entry.task = asyncio.create_task(_watch(account_id, entry.flow))
    return entry.task


async def _watch(account_id: str, flow: RegistrationFlow) -> None:
    try:
        await flow.await_confirmation()
    except asyncio.CancelledError:
        raise
    except Exception as e:
        # kept until the failure is read through the status route, or until it expires
        logger.info(f"Confirmation wait for {account_id} ended: {e}")


def _release(account_id: str, entry: PendingRegistration) -> None:
    if entry.task is not None and not entry.task.done():
        entry.task.cancel()
    if entry.subscription is not None:
        try:
            entry.subscription.unsubscribe()
        except Exception as e:
            logger.warning(f"Error unsubscribing auth listener for {account_id}: {e}")


def cancel_all() -> int:
    with _lock:
        entries = list(_registry.items())
        _registry.clear()
    for account_id, entry in entries:
        _release(account_id, entry)
    return len(entries)
