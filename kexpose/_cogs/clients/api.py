"""
Raw HTTP calls to the Kubernetes API: no resource semantics, only the transport.

The transient errors (disconnects, timeouts, HTTP 5xx) are retried within
one call as per ``settings.networking.error_backoffs``, and then escalated.
All other HTTP errors are escalated immediately as :mod:`errors` classes.
"""
import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any

import aiohttp

from kexpose._cogs.clients import auth, errors
from kexpose._cogs.configs import configuration
from kexpose._cogs.helpers import typedefs

# The errors that can go away by themselves, so the request is worth repeating.
RETRIED_ERRORS = (aiohttp.ClientConnectionError, errors.APIServerError, asyncio.TimeoutError)


async def request(
        method: str,
        url: str,  # relative to the server/api root.
        *,
        settings: configuration.OperatorSettings,
        context: auth.APIContext,
        payload: object | None = None,
        timeout: aiohttp.ClientTimeout | None = None,
        logger: typedefs.Logger,
) -> aiohttp.ClientResponse:
    """
    Make a request and return the unparsed response if it is not an error.

    The caller is responsible for reading & closing the response.
    """
    if '://' not in url:
        url = context.server.rstrip('/') + '/' + url.lstrip('/')
    if timeout is None:
        timeout = aiohttp.ClientTimeout(
            total=settings.networking.request_timeout,
            sock_connect=settings.networking.connect_timeout,
        )

    what = f"{method.upper()} {url}"
    backoffs = list(settings.networking.error_backoffs)
    attempts = len(backoffs) + 1
    for attempt in range(1, attempts + 1):
        idx = f"#{attempt}/{attempts}"
        if attempt > 1:
            logger.debug(f"Request attempt {idx}: {what}")
        try:
            response = await context.session.request(method, url, json=payload, timeout=timeout)
            await errors.check_response(response)
        except RETRIED_ERRORS as e:
            if attempt == attempts:
                logger.error(f"Request attempt {idx} failed; escalating: {what} -> {e!r}")
                raise
            logger.error(f"Request attempt {idx} failed; will retry: {what} -> {e!r}")
            await asyncio.sleep(backoffs[attempt - 1])
        else:
            if attempt > 1:
                logger.debug(f"Request attempt {idx} succeeded: {what}")
            context.add_response(response)
            return response

    raise RuntimeError("Broken retryable routine.")  # impossible, but needed for type-checking.


async def call(
        method: str,
        url: str,  # relative to the server/api root.
        *,
        settings: configuration.OperatorSettings,
        context: auth.APIContext,
        payload: object | None = None,
        logger: typedefs.Logger,
) -> Any:
    """ Make a request and return the parsed JSON of its response. """
    response = await request(
        method,
        url,
        payload=payload,
        settings=settings,
        context=context,
        logger=logger,
    )
    async with response:
        return await response.json()


async def stream(
        url: str,  # relative to the server/api root.
        *,
        settings: configuration.OperatorSettings,
        context: auth.APIContext,
        timeout: aiohttp.ClientTimeout | None = None,
        logger: typedefs.Logger,
) -> AsyncIterator[Any]:
    """ Make a GET request and yield the parsed JSON lines until it is closed. """
    response = await request(
        'get',
        url,
        timeout=timeout,
        settings=settings,
        context=context,
        logger=logger,
    )
    async with response:
        async for line in iter_jsonlines(response.content):
            yield json.loads(line.decode('utf-8'))


async def iter_jsonlines(
        content: aiohttp.StreamReader,
        chunk_size: int = 1024 * 1024,
) -> AsyncIterator[bytes]:
    """
    Iterate line by line over the response's content, skipping the empty lines.

    The aiohttp's own line iteration (``async for line in response.content``)
    fails if a line is longer than its buffer limit (128 KB). Deployments with
    huge annotations (e.g. ``last-applied-configuration``) can exceed that.
    """
    buffer = b''
    async for data in content.iter_chunked(chunk_size):
        buffer += data
        lines = buffer.split(b'\n')
        buffer = lines.pop()  # an incomplete tail, if any
        for line in lines:
            if line:
                yield line
    if buffer:
        yield buffer
