import asyncio
import logging
import signal
import threading
from collections.abc import Collection

from kexpose._cogs.aiokits import aiotasks
from kexpose._cogs.clients import auth
from kexpose._cogs.configs import configuration
from kexpose._cogs.structs import references
from kexpose._core.engines import piggybacking, probing
from kexpose._core.reactor import informing, processing, queueing, routing

logger = logging.getLogger(__name__)


class CacheSyncError(Exception):
    """ Raised when the initial listing of the watched objects takes too long. """


def run(
        *,
        settings: configuration.OperatorSettings | None = None,
        kubeconfig: str | None = None,
        namespace: str | None = None,
        liveness_endpoint: str | None = None,
        stop_flag: asyncio.Event | None = None,
        ready_flag: asyncio.Event | None = None,
) -> None:
    """
    Run the whole controller synchronously.

    This function should be used to run the controller in normal sync mode.
    """
    try:
        asyncio.run(operator(
            settings=settings,
            kubeconfig=kubeconfig,
            namespace=namespace,
            liveness_endpoint=liveness_endpoint,
            stop_flag=stop_flag,
            ready_flag=ready_flag,
        ))
    except asyncio.CancelledError:
        pass


async def operator(
        *,
        settings: configuration.OperatorSettings | None = None,
        context: auth.APIContext | None = None,
        kubeconfig: str | None = None,
        namespace: str | None = None,
        liveness_endpoint: str | None = None,
        stop_flag: asyncio.Event | None = None,
        ready_flag: asyncio.Event | None = None,
) -> None:
    """
    Run the whole controller asynchronously.

    This function should be used to run the controller in an asyncio event-loop
    if the controller is orchestrated explicitly and manually.

    It is efficiently `spawn_tasks` + `run_tasks` with some safety,
    plus the login and the cleanup of the API session.
    """
    settings = settings if settings is not None else configuration.OperatorSettings()
    if namespace is not None:
        settings.watching.namespace = namespace

    # The credentials are obtained once at startup: no re-authentication is supported.
    own_context = context is None
    if context is None:
        info = piggybacking.login(kubeconfig=kubeconfig, logger=logger)
        context = auth.APIContext(info)

    try:
        existing_tasks = await aiotasks.all_tasks()
        operator_tasks = await spawn_tasks(
            settings=settings,
            context=context,
            liveness_endpoint=liveness_endpoint,
            stop_flag=stop_flag,
            ready_flag=ready_flag,
        )
        await run_tasks(operator_tasks, ignored=existing_tasks)
    finally:
        if own_context:
            await context.close()


async def spawn_tasks(
        *,
        settings: configuration.OperatorSettings,
        context: auth.APIContext,
        liveness_endpoint: str | None = None,
        stop_flag: asyncio.Event | None = None,
        ready_flag: asyncio.Event | None = None,
) -> Collection[aiotasks.Task]:
    """
    Spawn all the tasks needed to run the controller.

    The tasks are properly inter-connected with the shared structures:
    the informer feeds the queue via the router, the workers drain the queue
    and read the informer's store. Nothing is shared via globals.
    """
    loop = asyncio.get_running_loop()

    # All tasks of the controller are synced via these primitives and structures:
    queue = queueing.WorkQueue(
        rate_limiter=queueing.default_rate_limiter(settings),
        name=references.DEPLOYMENTS.plural,
    )
    namespace = settings.watching.namespace
    router = routing.EventRouter(queue=queue, kind=references.DEPLOYMENTS.kind)
    informer = informing.Informer(
        settings=settings,
        context=context,
        resource=references.DEPLOYMENTS,
        namespace=references.NamespaceName(namespace) if namespace else None,
        on_add=router.on_add,
        on_delete=router.on_delete,
    )
    signal_flag: aiotasks.Future = asyncio.Future()
    tasks: list[aiotasks.Task] = []

    # Few common background forever-running infrastructural tasks (irregular root tasks).
    tasks.append(asyncio.create_task(
        name="stop-flag checker",
        coro=_stop_flag_checker(
            signal_flag=signal_flag,
            stop_flag=stop_flag)))
    tasks.append(asyncio.create_task(
        name="ultimate termination",
        coro=_ultimate_termination(
            settings=settings,
            stop_flag=stop_flag)))

    # The watch source: the deployments' cache and the notifications of their changes.
    tasks.append(aiotasks.create_guarded_task(
        name="watch source", logger=logger,
        coro=informer.run()))

    # The workers: started only once the cache is synced (or never, if it is not).
    tasks.append(aiotasks.create_guarded_task(
        name="work processor", logger=logger,
        coro=_work_processor(
            settings=settings,
            context=context,
            informer=informer,
            queue=queue,
            ready_flag=ready_flag)))

    # Liveness probing -- so that Kubernetes would know that the controller is alive.
    if liveness_endpoint:
        tasks.append(aiotasks.create_guarded_task(
            name="health reporter", logger=logger,
            coro=probing.health_reporter(
                endpoint=liveness_endpoint,
                synced=informer.synced,
                queue=queue)))

    # Ensure that all guarded tasks got control for a moment to enter the guard.
    await asyncio.sleep(0)

    # On Ctrl+C or pod termination, cancel all tasks gracefully.
    if threading.current_thread() is threading.main_thread():
        # Handle NotImplementedError when ran on Windows since asyncio only supports Unix signals
        try:
            loop.add_signal_handler(signal.SIGINT, signal_flag.set_result, signal.SIGINT)
            loop.add_signal_handler(signal.SIGTERM, signal_flag.set_result, signal.SIGTERM)
        except NotImplementedError:
            logger.warning("OS signals are ignored: can't add signal handler in Windows.")

    else:
        logger.warning("OS signals are ignored: running not in the main thread.")

    return tasks


async def run_tasks(
        root_tasks: Collection[aiotasks.Task],
        *,
        ignored: Collection[aiotasks.Task] = frozenset(),
) -> None:
    """
    Orchestrate the tasks and terminate them gracefully when needed.

    The root tasks are expected to run forever. Their number is limited. Once
    any of them exits, the whole controller and all other root tasks should exit.

    The hung tasks are those that were spawned during the controller's runtime,
    and were not cancelled/exited on the root tasks termination. They are given
    some extra time to finish, after which they are forcely terminated too.
    """

    # Run the infinite tasks until one of them fails/exits (they never exit normally).
    # If the controller is cancelled, propagate the cancellation to all the sub-tasks.
    try:
        root_done, root_pending = await aiotasks.wait(root_tasks, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        await aiotasks.stop(root_tasks, title="Root", logger=logger, cancelled=True, interval=10)
        hung_tasks = await aiotasks.all_tasks(ignored=ignored)
        await aiotasks.stop(hung_tasks, title="Hung", logger=logger, cancelled=True, interval=1)
        raise

    # If the controller is intact, but one of the root tasks has exited (successfully or not),
    # cancel all the remaining root tasks, and gracefully exit other spawned sub-tasks.
    root_cancelled, _ = await aiotasks.stop(root_pending, title="Root", logger=logger)

    # After the root tasks are all gone, cancel any spawned sub-tasks (e.g. the workers).
    hung_tasks = await aiotasks.all_tasks(ignored=ignored)
    try:
        hung_done, hung_pending = await aiotasks.wait(hung_tasks, timeout=5)
    except asyncio.CancelledError:
        await aiotasks.stop(hung_tasks, title="Hung", logger=logger, cancelled=True, interval=1)
        raise

    # If the controller is intact, but the timeout is reached, forcely cancel the sub-tasks.
    hung_cancelled, _ = await aiotasks.stop(hung_pending, title="Hung", logger=logger, interval=1)

    # If succeeded or if cancellation is silenced, re-raise from failed tasks (if any).
    await aiotasks.reraise(root_done | root_cancelled | hung_done | hung_cancelled)


async def _work_processor(
        *,
        settings: configuration.OperatorSettings,
        context: auth.APIContext,
        informer: informing.Informer,
        queue: queueing.WorkQueue,
        ready_flag: asyncio.Event | None = None,
) -> None:
    """
    Wait for the cache to sync, then run the workers until the controller exits.

    Serving with an unsynced cache can lead to wrong decisions (e.g. skipping
    the objects not yet seen), so it is better to fail and be restarted.
    """
    timeout = settings.watching.sync_timeout
    logger.debug(f"Waiting for the cache to sync (for {timeout}s at most).")
    if not await informer.wait_for_sync(timeout=timeout):
        raise CacheSyncError(f"The cache of {informer.resource} has not synced in {timeout}s.")

    count = settings.queueing.workers
    logger.info(f"The cache is synced; starting {count} worker(s).")
    workers = [
        asyncio.create_task(
            name=f"worker #{idx}",
            coro=processing.supervised_worker(
                name=f"worker #{idx}",
                queue=queue,
                settings=settings,
                context=context,
                store=informer.store))
        for idx in range(count)
    ]
    if ready_flag is not None:
        ready_flag.set()

    # The workers exit only when the queue is shut down, i.e. when the controller exits.
    # Give them some time to finish their current keys, then cancel them.
    try:
        await aiotasks.wait(workers)
    finally:
        queue.shutdown()
        _, pending = await aiotasks.wait(workers, timeout=settings.queueing.exit_timeout)
        await aiotasks.stop(pending, title="Worker", logger=logger, quiet=True)


async def _stop_flag_checker(
        signal_flag: aiotasks.Future,
        stop_flag: asyncio.Event | None,
) -> None:
    """
    A top-level task for external stopping by setting a stop-flag. Once set,
    this task will exit, and thus all other top-level tasks will be cancelled.
    """

    # Selects the flags to be awaited (if set).
    flags: list[aiotasks.Future] = [signal_flag]
    if stop_flag is not None:
        flags.append(asyncio.create_task(stop_flag.wait(), name="stop-flag waiter"))

    # Wait until one of the stoppers is set/raised.
    try:
        done, pending = await asyncio.wait(flags, return_when=asyncio.FIRST_COMPLETED)
        future = done.pop()
        result = await future
    except asyncio.CancelledError:
        pass  # the controller is stopping for any other reason
    else:
        if isinstance(result, signal.Signals):
            logger.info("Signal %s is received. Controller is stopping.", result.name)
        else:
            logger.info("Stop-flag is raised. Controller is stopping.")
    finally:
        for flag in flags[1:]:
            flag.cancel()


async def _ultimate_termination(
        *,
        settings: configuration.OperatorSettings,
        stop_flag: asyncio.Event | None,
) -> None:
    """
    Ensure that SIGKILL is sent regardless of the controller's stopping routines.

    Try to be gentle and kill only the thread with the controller, not the whole
    process or a process group. If this is the main thread (as in most cases),
    this would imply the process termination too.

    Intentional stopping via a stop-flag is ignored.
    """
    # Sleep forever, or until cancelled, which happens when the controller begins its shutdown.
    try:
        await asyncio.Event().wait()
    except asyncio.CancelledError:
        if stop_flag is None or not stop_flag.is_set():
            if settings.process.ultimate_exiting_timeout is not None:
                loop = asyncio.get_running_loop()
                loop.call_later(settings.process.ultimate_exiting_timeout,
                                signal.pthread_kill, threading.get_ident(), signal.SIGKILL)
