"""
Watching and streaming watch-events.

The watch-stream is a long-living HTTP request to the API, with the events
sent as JSON-lines. Every (re)connection starts with a full listing of
the objects, which are yielded as the pseudo-events (with type ``None``),
followed by the `Bookmark.LISTED` marker, followed by the actual events
since the listing's resource version.

The consumers can rely on this sequence to rebuild their caches
on every reconnection: everything before the bookmark is the full truth.
"""
import asyncio
import enum
import logging
from collections.abc import AsyncIterator
from typing import cast

import aiohttp

from kexpose._cogs.clients import api, auth, errors, fetching
from kexpose._cogs.configs import configuration
from kexpose._cogs.structs import bodies, references

logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAY_SECONDS = 1


class WatchingError(Exception):
    """
    Raised when an unexpected error happens in the watch-stream API.
    """


class Bookmark(enum.Enum):
    """ Special marks sent in the stream among raw events. """
    LISTED = enum.auto()  # the listing is over, now streaming.


async def infinite_watch(
        *,
        settings: configuration.OperatorSettings,
        context: auth.APIContext,
        resource: references.Resource,
        namespace: references.Namespace,
        _iterations: int | None = None,  # used in tests/mocks/fixtures
) -> AsyncIterator[Bookmark | bodies.RawEvent]:
    """
    Stream the watch-events infinitely.

    This routine never ends gracefully. If a watcher's stream fails,
    a new one is recreated with a fresh listing, and the stream continues.
    The API errors of the listing or of the watch-stream are retried forever,
    with the pause growing on every consecutive failure until the next
    successful listing.
    """
    where = f'in {namespace!r}' if namespace is not None else 'cluster-wide'
    logger.debug(f"Starting the watch-stream for {resource} {where}.")
    failures = 0
    try:
        while _iterations is None or _iterations > 0:  # equivalent to `while True` in non-test mode
            _iterations = None if _iterations is None else _iterations - 1
            stream = continuous_watch(
                settings=settings,
                context=context,
                resource=resource,
                namespace=namespace,
            )
            try:
                async for raw_event in stream:
                    if raw_event is Bookmark.LISTED:
                        failures = 0
                    yield raw_event
            except errors.APITooManyRequestsError as ex:
                retry_after = ex.details.get("retryAfterSeconds") if ex.details else None
                retry_wait = retry_after or DEFAULT_RETRY_DELAY_SECONDS
                logger.warning(
                    f"Receiving `too many requests` error from server, will retry after "
                    f"{retry_wait} seconds. Error details: {ex}"
                )
                await asyncio.sleep(retry_wait)
            except (errors.APIError, WatchingError) as ex:
                failures += 1
                delay = min(settings.watching.reconnect_backoff * 2 ** (failures - 1),
                            settings.watching.max_reconnect_backoff)
                logger.error(f"The watch-stream for {resource} {where} has failed "
                             f"({failures} time(s) in a row); reconnecting in {delay}s: {ex!r}")
                await asyncio.sleep(delay)
            await asyncio.sleep(settings.watching.reconnect_backoff)
    finally:
        logger.debug(f"Stopping the watch-stream for {resource} {where}.")


async def continuous_watch(
        *,
        settings: configuration.OperatorSettings,
        context: auth.APIContext,
        resource: references.Resource,
        namespace: references.Namespace,
) -> AsyncIterator[Bookmark | bodies.RawEvent]:

    # First, list the resources regularly, and get the list's resource version.
    # Simulate the events with type "None" event: they are the cache's initial content.
    try:
        objs, resource_version = await fetching.list_objs(
            settings=settings,
            context=context,
            resource=resource,
            namespace=namespace,
            logger=logger,
        )
        for obj in objs:
            yield {'type': None, 'object': obj}

    except (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError, asyncio.TimeoutError):
        return

    # Notify the watcher that the initial listing is over, even if there was nothing yielded.
    yield Bookmark.LISTED

    # Repeat through disconnects of the watch as long as the resource version is valid (no errors).
    # The individual watching API calls are disconnected by timeout even if the stream is fine.
    while True:

        # Then, watch the resources starting from the list's resource version.
        stream = watch_objs(
            settings=settings,
            context=context,
            resource=resource,
            namespace=namespace,
            since=resource_version,
        )
        async for raw_input in stream:
            raw_type = raw_input['type']
            raw_object = raw_input['object']

            # "410 Gone" is for the "resource version too old" error, we must restart watching.
            # The resource versions are lost by k8s after a few minutes (5 as per the official doc).
            # The error occurs when there is nothing happening for a few minutes. This is normal.
            if raw_type == 'ERROR' and cast(bodies.RawError, raw_object).get('code') == 410:
                where = f'in {namespace!r}' if namespace is not None else 'cluster-wide'
                logger.debug(f"Restarting the watch-stream for {resource} {where}.")
                return  # out of the regular stream, to the infinite stream.

            # Other watch errors end this stream; the infinite stream re-lists after a backoff.
            if raw_type == 'ERROR':
                raise WatchingError(f"Error in the watch-stream: {raw_object}")

            # Ensure that the event is something we understand and can handle.
            if raw_type not in ['ADDED', 'MODIFIED', 'DELETED']:
                logger.warning(f"Ignoring an unsupported event type: {raw_input!r}")
                continue

            # Keep the latest seen resource version for continuation of the stream on disconnects.
            body = cast(bodies.RawBody, raw_object)
            resource_version = body.get('metadata', {}).get('resourceVersion', resource_version)

            # Yield normal events to the consumer. Errors are already filtered out.
            yield cast(bodies.RawEvent, raw_input)


async def watch_objs(
        *,
        settings: configuration.OperatorSettings,
        context: auth.APIContext,
        resource: references.Resource,
        namespace: references.Namespace,
        since: str | None = None,
) -> AsyncIterator[bodies.RawInput]:
    """
    Watch objects of a specific resource type.

    The cluster-scoped call is used when the controller serves all namespaces.
    Otherwise, the namespace-scoped call is used.
    """
    params: dict[str, str] = {}
    params['watch'] = 'true'
    if since is not None:
        params['resourceVersion'] = since
    if settings.watching.server_timeout is not None:
        params['timeoutSeconds'] = str(settings.watching.server_timeout)

    connect_timeout = (
        settings.watching.connect_timeout if settings.watching.connect_timeout is not None else
        settings.networking.connect_timeout if settings.networking.connect_timeout is not None else
        settings.networking.request_timeout
    )

    # Stream the parsed events from the response until it is closed server-side.
    try:
        async for raw_input in api.stream(
            url=resource.get_url(namespace=namespace, params=params),
            settings=settings,
            context=context,
            logger=logger,
            timeout=aiohttp.ClientTimeout(
                total=settings.watching.client_timeout,
                sock_connect=connect_timeout,
            ),
        ):
            yield raw_input

    except (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError, asyncio.TimeoutError):
        pass
