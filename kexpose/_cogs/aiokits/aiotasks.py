"""
Helpers for orchestrating the controller's root tasks and their sub-tasks.

Only tasks are supported, not generic awaitables: the tasks are not only
awaited, but also cancelled.
"""
import asyncio
from collections.abc import Collection, Coroutine
from typing import TYPE_CHECKING, Any

from kexpose._cogs.helpers import typedefs

# A workaround for a difference in tasks at runtime and type-checking time.
# Otherwise, at runtime: TypeError: 'type' object is not subscriptable.
if TYPE_CHECKING:
    Future = asyncio.Future[Any]
    Task = asyncio.Task[Any]
else:
    Future = asyncio.Future
    Task = asyncio.Task


async def guard(
        coro: Coroutine[Any, Any, Any],
        name: str,
        *,
        logger: typedefs.Logger,
) -> None:
    """
    Log the outcome of a task that is expected to run forever.

    The root tasks (the watch source, the work processor, the health reporter)
    are only awaited when the controller exits. Their failures are logged
    as soon as they happen, and their unexpected exits are logged too.
    """
    capname = name.capitalize()
    try:
        await coro
    except asyncio.CancelledError:
        logger.debug(f"{capname} is cancelled.")
        raise
    except Exception as e:
        logger.exception(f"{capname} has failed: {e}")
        raise
    else:
        logger.warning(f"{capname} has finished unexpectedly.")


def create_guarded_task(
        coro: Coroutine[Any, Any, Any],
        name: str,
        *,
        logger: typedefs.Logger,
) -> Task:
    """ Create a named task wrapped into :func:`guard`. """
    return asyncio.create_task(guard(coro, name, logger=logger), name=name)


async def wait(
        tasks: Collection[Task],
        *,
        timeout: float | None = None,
        return_when: Any = asyncio.ALL_COMPLETED,
) -> tuple[set[Task], set[Task]]:
    """
    A safer version of :func:`asyncio.wait` -- does not fail on an empty list.
    """
    if not tasks:
        return set(), set()
    done, pending = await asyncio.wait(tasks, timeout=timeout, return_when=return_when)
    return done, pending


async def stop(
        tasks: Collection[Task],
        *,
        title: str,
        quiet: bool = False,
        cancelled: bool = False,
        interval: float | None = None,
        logger: typedefs.Logger | None = None,
) -> tuple[set[Task], set[Task]]:
    """
    Cancel the tasks and wait until they are finished.

    With the interval, the stuck tasks are reported on every interval until
    they are gone. In the quiet mode, only the stuck tasks are reported.
    If the stopping is cancelled itself, the remaining tasks are reported
    and the cancellation is propagated.
    """
    captitle = title.capitalize()
    if not tasks:
        if logger is not None and not quiet:
            logger.debug(f"{captitle} tasks stopping is skipped: no tasks given.")
        return set(), set()

    for task in tasks:
        task.cancel()

    why = 'cancelling normally' if cancelled else 'finishing normally'
    done: set[Task] = set()
    pending: set[Task] = set(tasks)
    stuck = False
    while pending:
        try:
            done_now, pending = await wait(pending, timeout=interval)
        except asyncio.CancelledError:
            pending = {task for task in tasks if not task.done()}
            if logger is not None:
                why = 'double-cancelling at stopping' if cancelled else 'cancelling at stopping'
                logger.debug(f"{captitle} tasks are interrupted: {why}; tasks left: {pending!r}")
            raise
        done |= done_now
        stuck = stuck or bool(pending)
        if logger is not None and (not quiet or stuck):
            are = 'are not' if pending else 'are'
            logger.debug(f"{captitle} tasks {are} stopped: {why}; tasks left: {pending!r}")

    return done, pending


async def reraise(
        tasks: Collection[Task],
) -> None:
    """
    Re-raise errors from tasks, if any. Do nothing if all tasks have succeeded.
    """
    for task in tasks:
        try:
            task.result()  # can raise the regular (non-cancellation) exceptions.
        except asyncio.CancelledError:
            pass


async def all_tasks(
        *,
        ignored: Collection[Task] = frozenset(),
) -> Collection[Task]:
    """
    Return all tasks in the current event loop, except the current & ignored ones.

    The ignored tasks are those that existed before the controller has started,
    so that only the tasks spawned by the controller are stopped at exit.
    """
    current_task = asyncio.current_task()
    return {task for task in asyncio.all_tasks()
            if task is not current_task and task not in ignored}
