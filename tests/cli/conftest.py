import functools
import logging

import click.testing
import pytest

from kexpose.cli import main


@pytest.fixture(autouse=True)
def _restore_root_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    asyncio_logger = logging.getLogger('asyncio')
    asyncio_handlers = list(asyncio_logger.handlers)
    asyncio_propagate = asyncio_logger.propagate
    try:
        yield
    finally:
        root.handlers[:] = handlers
        root.setLevel(level)
        asyncio_logger.handlers[:] = asyncio_handlers
        asyncio_logger.propagate = asyncio_propagate


@pytest.fixture()
def runner():
    runner = click.testing.CliRunner()
    return runner


@pytest.fixture()
def invoke(runner):
    return functools.partial(runner.invoke, main)


@pytest.fixture()
def real_run(mocker):
    return mocker.patch('kexpose._core.reactor.running.run')
