import asyncio
import logging
import urllib.parse

import aiohttp.web

from kexpose._cogs.aiokits import aiotoggles
from kexpose._core.reactor import queueing

logger = logging.getLogger(__name__)

LOCALHOST: str = 'localhost'
HTTP_PORT: int = 80


async def health_reporter(
        endpoint: str,
        *,
        synced: aiotoggles.Toggle,
        queue: queueing.WorkQueue,
        ready_flag: asyncio.Event | None = None,  # used for testing
) -> None:
    """
    Simple HTTP server to report the controller's health to K8s probes.

    Runs forever until cancelled (which happens if any other root task
    is cancelled or failed). Once it will stop responding for any reason,
    Kubernetes will assume the pod is not alive anymore, and will restart it.

    The controller is alive as long as it responds: the cache synchronisation
    and the queue length are reported in the body, but do not affect the status.
    """

    async def get_health(
            request: aiohttp.web.Request,
    ) -> aiohttp.web.Response:
        status = {
            'synced': synced.is_on(),
            'queued': len(queue),
        }
        return aiohttp.web.json_response(status)

    parts = urllib.parse.urlsplit(endpoint)
    if parts.scheme == 'http':
        host = parts.hostname or LOCALHOST
        port = parts.port or HTTP_PORT
        path = parts.path
    else:
        raise Exception(f"Unsupported scheme: {endpoint}")

    app = aiohttp.web.Application()
    app.add_routes([aiohttp.web.get(path, get_health)])

    runner = aiohttp.web.AppRunner(app, handle_signals=False, shutdown_timeout=1.0)
    await runner.setup()

    site = aiohttp.web.TCPSite(runner, host, port)
    await site.start()

    # Log with the actual URL: normalised, with hostname/port set.
    url = urllib.parse.urlunsplit([parts.scheme, f'{host}:{port}', path, '', ''])
    logger.debug(f"Serving health status at {url}")
    if ready_flag is not None:
        ready_flag.set()

    try:
        # Sleep forever. No activity is needed.
        await asyncio.Event().wait()
    finally:
        # On any reason of exit, stop reporting the health.
        await asyncio.shield(runner.cleanup())
