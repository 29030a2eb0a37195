import asyncio
from typing import Any, Awaitable, Callable, Dict, List

from motor.motor_asyncio import AsyncIOMotorCollection

from chatsync.errors import SubscriptionFailure
from chatsync.repositories.base import ErrorHandler, SnapshotHandler, Subscription
from chatsync.utils.logger import get_logger


logger = get_logger(__name__)

MAX_AWAIT_TIME_MS = 500


def open_live_query(
    collection: AsyncIOMotorCollection,
    pipeline: List[Dict[str, Any]],
    fetch: Callable[[], Awaitable[List[Dict[str, Any]]]],
    on_snapshot: SnapshotHandler,
    on_error: ErrorHandler | None = None,
) -> Subscription:
    """Re-run ``fetch`` and push its result on every matching change event.

    Needs a replica set (change streams); on a standalone server the watch
    fails immediately and the failure is reported through ``on_error``.
    """
    subscription = Subscription(on_snapshot, on_error)
    task = asyncio.create_task(_run(collection, pipeline, fetch, subscription))
    subscription.attach(task)
    return subscription


async def _run(collection, pipeline, fetch, subscription: Subscription) -> None:
    try:
        async with collection.watch(pipeline, full_document="updateLookup", max_await_time_ms=MAX_AWAIT_TIME_MS) as stream:
            # start the cursor before the first read so no change falls between them
            await stream.try_next()
            subscription.deliver(await fetch())
            async for _change in stream:
                if not subscription.active:
                    return
                subscription.deliver(await fetch())
        subscription.fail(SubscriptionFailure(f"change stream on {collection.name} closed"))
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        logger.error("Live query on %s terminated: %s", collection.name, exc)
        failure = SubscriptionFailure(str(exc))
        failure.__cause__ = exc
        subscription.fail(failure)
