import logging

import pytest

from kexpose._cogs.structs.references import ObjectRef
from kexpose._core.actions.loggers import LogFormat, ObjectJsonFormatter, ObjectLogger, \
                                          ObjectPrefixingJsonFormatter, \
                                          ObjectPrefixingTextFormatter, ObjectTextFormatter, \
                                          configure, make_formatter


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


def _own_handlers():
    return [h for h in logging.getLogger().handlers if type(h).__name__ == '_KexposeStreamHandler']


@pytest.mark.parametrize('kwargs, level', [
    (dict(), logging.INFO),
    (dict(verbose=True), logging.DEBUG),
    (dict(debug=True), logging.DEBUG),
    (dict(quiet=True), logging.WARNING),
])
def test_log_levels(kwargs, level):
    configure(**kwargs)
    assert logging.getLogger().level == level


def test_handler_is_not_duplicated_on_reconfiguration():
    configure()
    configure(verbose=True)
    configure(log_format=LogFormat.JSON)
    assert len(_own_handlers()) == 1
    assert isinstance(_own_handlers()[0].formatter, ObjectJsonFormatter)


def test_asyncio_logs_are_silenced_unless_debugging():
    configure(verbose=True)
    assert not logging.getLogger('asyncio').propagate
    assert isinstance(logging.getLogger('asyncio').handlers[0], logging.NullHandler)

    configure(debug=True)
    assert logging.getLogger('asyncio').propagate


@pytest.mark.parametrize('log_format, log_prefix, cls', [
    (LogFormat.PLAIN, False, ObjectTextFormatter),
    (LogFormat.PLAIN, True, ObjectPrefixingTextFormatter),
    (LogFormat.FULL, False, ObjectTextFormatter),
    (LogFormat.FULL, True, ObjectPrefixingTextFormatter),
    (LogFormat.FULL, None, ObjectPrefixingTextFormatter),
    (LogFormat.JSON, False, ObjectJsonFormatter),
    (LogFormat.JSON, True, ObjectPrefixingJsonFormatter),
    (LogFormat.JSON, None, ObjectJsonFormatter),
    ('%(message)s', False, ObjectTextFormatter),
    ('%(message)s', True, ObjectPrefixingTextFormatter),
])
def test_formatter_selection(log_format, log_prefix, cls):
    formatter = make_formatter(log_format=log_format, log_prefix=log_prefix)
    assert type(formatter) is cls


def test_unsupported_format_fails():
    with pytest.raises(ValueError, match=r"Unsupported log format"):
        make_formatter(log_format=123)


def test_prefixes_in_plain_format():
    formatter = make_formatter(log_format=LogFormat.PLAIN, log_prefix=True)
    record = logging.LogRecord('x', logging.INFO, __file__, 1, "hello", (), None)
    record.k8s_ref = {'kind': 'Deployment', 'name': 'web', 'namespace': 'ns1'}
    assert formatter.format(record) == '[ns1/web] hello'


def test_object_logger_merges_extras(caplog):
    caplog.set_level(logging.DEBUG)
    logger = ObjectLogger(ref=ObjectRef('ns1', 'web'), kind='Deployment')
    logger.info("hello", extra={'custom': 'value'})
    assert caplog.records[-1].custom == 'value'
    assert caplog.records[-1].k8s_ref == {'kind': 'Deployment', 'name': 'web', 'namespace': 'ns1'}
    assert caplog.records[-1].name == 'kexpose.objects'
