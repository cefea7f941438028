"""
The workers: take the keys from the queue, reconcile them, report the outcomes.

Every worker processes one key at a time; multiple workers run concurrently,
but never on the same key (the queue guarantees that). The outcome decides
the key's future: forgotten on success, or re-queued with a backoff on failure.
"""
import asyncio
import logging
from collections.abc import Mapping

from kexpose._cogs.clients import auth
from kexpose._cogs.configs import configuration
from kexpose._cogs.structs import bodies, references
from kexpose._core.reactor import queueing, reconciling

logger = logging.getLogger(__name__)


def mark_done(
        queue: queueing.WorkQueue,
        key: references.ObjectRef,
        outcome: reconciling.Outcome,
) -> None:
    """
    Release the key and schedule its retry if needed.

    Only the successful passes reset the backoff. The failed ones are re-added
    after the backoff, which grows with every consecutive failure of the key.
    """
    match outcome:
        case reconciling.Outcome.SUCCESS:
            queue.forget(key)
        case reconciling.Outcome.RETRY:
            queue.add_rate_limited(key)
            logger.debug(f"Retrying {key} later: {queue.num_requeues(key)} failure(s) so far.")
    queue.done(key)


async def worker(
        *,
        queue: queueing.WorkQueue,
        settings: configuration.OperatorSettings,
        context: auth.APIContext,
        store: Mapping[references.ObjectRef, bodies.RawBody],
) -> None:
    """
    Process the keys one by one until the queue is shut down.
    """
    while True:
        key = await queue.get()
        if key is None:
            break

        outcome = reconciling.Outcome.RETRY
        try:
            outcome = await reconciling.reconcile(
                key,
                settings=settings,
                context=context,
                store=store,
            )
        finally:
            mark_done(queue, key, outcome)


async def supervised_worker(
        *,
        name: str,
        queue: queueing.WorkQueue,
        settings: configuration.OperatorSettings,
        context: auth.APIContext,
        store: Mapping[references.ObjectRef, bodies.RawBody],
) -> None:
    """
    Run a worker, and restart it after a short delay if it crashes.

    The worker exits normally only when the queue is shut down.
    """
    while not queue.shutting_down():
        try:
            await worker(queue=queue, settings=settings, context=context, store=store)
        except Exception as e:
            delay = settings.queueing.worker_restart_delay
            logger.exception(f"{name.capitalize()} has crashed; restarting in {delay}s: {e!r}")
            await asyncio.sleep(delay)
        else:
            break
