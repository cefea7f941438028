import asyncio
from unittest.mock import Mock

import pytest

from kexpose._cogs.clients import watching
from kexpose._cogs.clients.watching import Bookmark
from kexpose._cogs.structs.references import DEPLOYMENTS, ObjectRef
from kexpose._core.reactor.informing import Informer, Store


def make_body(name, namespace='ns1', **labels):
    return {
        'metadata': {'name': name, 'namespace': namespace},
        'spec': {'template': {'metadata': {'labels': labels or {'app': name}}}},
    }


@pytest.fixture()
def stream(mocker):
    """
    A fake watch-stream: yields the prepared events, then blocks until released.
    """
    events = []
    release = asyncio.Event()

    async def fake_infinite_watch(**kwargs):
        for event in events:
            yield event
        await release.wait()

    mocker.patch.object(watching, 'infinite_watch', fake_infinite_watch)
    return Mock(events=events, release=release)


@pytest.fixture()
def on_add():
    return Mock()


@pytest.fixture()
def on_delete():
    return Mock()


@pytest.fixture()
def informer(settings, context, on_add, on_delete):
    return Informer(settings=settings, context=context, namespace='ns1',
                    on_add=on_add, on_delete=on_delete)


async def run_until_blocked(informer, stream):
    task = asyncio.create_task(informer.run())
    await asyncio.sleep(0.01)
    return task


async def finish(task, stream):
    stream.release.set()
    await asyncio.wait_for(task, timeout=1.0)


def test_store_is_a_readonly_mapping():
    store = Store()
    body = make_body('web')
    store._put(ObjectRef('ns1', 'web'), body)
    assert len(store) == 1
    assert store[ObjectRef('ns1', 'web')] is body
    assert ObjectRef('ns1', 'web') in store
    assert ObjectRef('ns1', 'xyz') not in store
    assert store.get(ObjectRef('ns1', 'xyz')) is None
    assert list(store) == [ObjectRef('ns1', 'web')]
    assert store.list() == [body]
    assert repr(store) == '<Store: 1 objects>'
    assert store._pop(ObjectRef('ns1', 'web')) is body
    assert store._pop(ObjectRef('ns1', 'web')) is None
    assert len(store) == 0


async def test_informer_defaults(settings, context):
    informer = Informer(settings=settings, context=context)
    assert informer.resource == DEPLOYMENTS
    assert informer.namespace is None
    assert not informer.has_synced()
    assert len(informer.store) == 0


async def test_initial_listing_fills_the_store_and_notifies(
        informer, stream, on_add, on_delete):
    body1, body2 = make_body('web1'), make_body('web2')
    stream.events.extend([
        {'type': None, 'object': body1},
        {'type': None, 'object': body2},
        Bookmark.LISTED,
    ])

    task = await run_until_blocked(informer, stream)
    assert informer.has_synced()
    assert dict(informer.store) == {ObjectRef('ns1', 'web1'): body1,
                                    ObjectRef('ns1', 'web2'): body2}
    assert on_add.call_args_list == [((body1,),), ((body2,),)]
    assert not on_delete.called
    await finish(task, stream)


async def test_not_synced_before_the_listing_is_over(informer, stream, on_add):
    stream.events.extend([
        {'type': None, 'object': make_body('web1')},
    ])

    task = await run_until_blocked(informer, stream)
    assert not informer.has_synced()
    assert not await informer.wait_for_sync(timeout=0.05)
    assert len(informer.store) == 1
    assert on_add.call_count == 1
    await finish(task, stream)


async def test_waiting_for_the_sync(informer, stream):
    stream.events.extend([Bookmark.LISTED])

    task = asyncio.create_task(informer.run())
    assert await informer.wait_for_sync(timeout=1.0)
    await finish(task, stream)


async def test_unsynced_when_exited(informer, stream):
    stream.events.extend([Bookmark.LISTED])

    task = await run_until_blocked(informer, stream)
    assert informer.has_synced()
    await finish(task, stream)
    assert not informer.has_synced()


async def test_additions_are_notified(informer, stream, on_add, on_delete):
    body = make_body('web1')
    stream.events.extend([
        Bookmark.LISTED,
        {'type': 'ADDED', 'object': body},
    ])

    task = await run_until_blocked(informer, stream)
    assert dict(informer.store) == {ObjectRef('ns1', 'web1'): body}
    assert on_add.call_args_list == [((body,),)]
    assert not on_delete.called
    await finish(task, stream)


async def test_modifications_only_update_the_store(informer, stream, on_add, on_delete):
    body1 = make_body('web1', app='v1')
    body2 = make_body('web1', app='v2')
    stream.events.extend([
        {'type': None, 'object': body1},
        Bookmark.LISTED,
        {'type': 'MODIFIED', 'object': body2},
    ])

    task = await run_until_blocked(informer, stream)
    assert informer.store[ObjectRef('ns1', 'web1')] is body2
    assert on_add.call_args_list == [((body1,),)]
    assert not on_delete.called
    await finish(task, stream)


async def test_repeated_additions_are_not_notified(informer, stream, on_add):
    body1 = make_body('web1', app='v1')
    body2 = make_body('web1', app='v2')
    stream.events.extend([
        {'type': None, 'object': body1},
        Bookmark.LISTED,
        {'type': 'ADDED', 'object': body2},
    ])

    task = await run_until_blocked(informer, stream)
    assert informer.store[ObjectRef('ns1', 'web1')] is body2
    assert on_add.call_count == 1
    await finish(task, stream)


async def test_deletions_are_notified(informer, stream, on_add, on_delete):
    body = make_body('web1')
    stream.events.extend([
        {'type': None, 'object': body},
        Bookmark.LISTED,
        {'type': 'DELETED', 'object': body},
    ])

    task = await run_until_blocked(informer, stream)
    assert len(informer.store) == 0
    assert on_add.call_count == 1
    assert on_delete.call_args_list == [((body,),)]
    await finish(task, stream)


async def test_relisting_notifies_about_the_unwatched_changes(
        informer, stream, on_add, on_delete):
    body1, body2, body3 = make_body('web1'), make_body('web2'), make_body('web3')
    stream.events.extend([
        {'type': None, 'object': body1},
        {'type': None, 'object': body2},
        Bookmark.LISTED,
        # reconnected after a "410 Gone": web1 is deleted, web3 is added while disconnected.
        {'type': None, 'object': body2},
        {'type': None, 'object': body3},
        Bookmark.LISTED,
    ])

    task = await run_until_blocked(informer, stream)
    assert informer.has_synced()
    assert set(informer.store) == {ObjectRef('ns1', 'web2'), ObjectRef('ns1', 'web3')}
    assert on_add.call_args_list == [((body1,),), ((body2,),), ((body3,),)]
    assert on_delete.call_args_list == [((body1,),)]
    await finish(task, stream)


async def test_unidentifiable_objects_are_ignored(informer, stream, on_add, assert_logs):
    stream.events.extend([
        {'type': None, 'object': {'metadata': {'name': 'web1'}}},
        Bookmark.LISTED,
        {'type': 'ADDED', 'object': {'metadata': {}}},
        {'type': 'DELETED', 'object': {}},
    ])

    task = await run_until_blocked(informer, stream)
    assert informer.has_synced()
    assert len(informer.store) == 0
    assert not on_add.called
    assert_logs([
        r"Ignoring an unidentifiable object",
        r"Ignoring an unidentifiable object",
        r"Ignoring an unidentifiable object",
    ])
    await finish(task, stream)


async def test_callbacks_are_optional(settings, context, stream):
    informer = Informer(settings=settings, context=context)
    stream.events.extend([
        {'type': None, 'object': make_body('web1')},
        Bookmark.LISTED,
        {'type': 'ADDED', 'object': make_body('web2')},
        {'type': 'DELETED', 'object': make_body('web1')},
    ])

    task = await run_until_blocked(informer, stream)
    assert set(informer.store) == {ObjectRef('ns1', 'web2')}
    await finish(task, stream)
