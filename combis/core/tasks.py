"""
Background work tied to database transactions.

Notifications must only describe committed state, so they are queued on the
session and spawned once its outermost transaction commits:

    dispatch_after_commit(session, lambda: notifier.notify_new_vote(ref, members))

A rollback of the outer transaction discards the queue. Savepoint releases and
rollbacks leave it untouched.
"""

import asyncio
import logging
from typing import Any, Callable, Coroutine

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session, SessionTransaction

logger = logging.getLogger(__name__)

PENDING_DISPATCH_KEY = "pending_dispatches"

CoroutineFactory = Callable[[], Coroutine[Any, Any, Any]]


# =============================================================================
# DETACHED TASKS
# =============================================================================


_background_tasks: set[asyncio.Task] = set()


def spawn_background(coro: Coroutine, name: str | None = None) -> asyncio.Task:
    """Run ``coro`` detached from the caller. Failures are logged only."""
    task = asyncio.create_task(coro, name=name)
    _background_tasks.add(task)
    task.add_done_callback(_on_background_done)
    return task


def _on_background_done(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(f"Background task {task.get_name()} failed: {error!r}")


async def drain_background_tasks() -> None:
    """Wait for pending dispatches (shutdown, CLI jobs)."""
    while _background_tasks:
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)


# =============================================================================
# POST-COMMIT DISPATCH
# =============================================================================


def dispatch_after_commit(
    session: AsyncSession | Session,
    factory: CoroutineFactory,
    name: str | None = None,
) -> None:
    """Spawn ``factory()`` in the background once ``session`` commits."""
    session.info.setdefault(PENDING_DISPATCH_KEY, []).append((factory, name))


def pending_dispatches(session: AsyncSession | Session) -> int:
    return len(session.info.get(PENDING_DISPATCH_KEY, []))


@event.listens_for(Session, "after_commit")
def _spawn_pending(session: Session) -> None:
    # Also fired when a savepoint is released
    if session.in_nested_transaction():
        return

    for factory, name in session.info.pop(PENDING_DISPATCH_KEY, []):
        try:
            spawn_background(factory(), name=name)
        except Exception:
            logger.exception(f"Could not dispatch {name or factory!r} after commit")


@event.listens_for(Session, "after_transaction_end")
def _discard_pending(session: Session, transaction: SessionTransaction) -> None:
    # After a commit the queue is already empty; after a rollback it is dropped
    if transaction.parent is not None:
        return

    discarded = session.info.pop(PENDING_DISPATCH_KEY, [])
    if discarded:
        logger.debug(f"Transaction rolled back, {len(discarded)} dispatches discarded")
