"""
The watch source: a local cache of the deployments, kept up to date by watching.

The informer lists the objects, then watches for their changes, and mirrors
them into the store. Interested parties are notified of additions and
deletions via the callbacks (the modifications only update the store).

The store is eventually consistent: it can lag behind the cluster's state,
especially on deletions. It is good enough for reading the objects' content,
but not for deciding on their existence; for that, the API must be asked.

The store is considered synced after the first complete listing is received.
Nothing should be processed before that, since the absence of an object
in the store can mean both "deleted" and "not yet seen".
"""
import logging
from collections.abc import Callable, Collection, Iterator, Mapping
from typing import cast

from kexpose._cogs.aiokits import aiotoggles
from kexpose._cogs.clients import auth, watching
from kexpose._cogs.configs import configuration
from kexpose._cogs.structs import bodies, references

logger = logging.getLogger(__name__)

Callback = Callable[[bodies.RawBody], None]


class Store(Mapping[references.ObjectRef, bodies.RawBody]):
    """
    A read-only view of the cached objects, keyed by their namespaces & names.

    Only the informer modifies it; everyone else can only read.
    """

    def __init__(self) -> None:
        super().__init__()
        self._items: dict[references.ObjectRef, bodies.RawBody] = {}

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__}: {len(self._items)} objects>'

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[references.ObjectRef]:
        return iter(self._items)

    def __getitem__(self, ref: references.ObjectRef) -> bodies.RawBody:
        return self._items[ref]

    def list(self) -> Collection[bodies.RawBody]:
        return list(self._items.values())

    def _put(self, ref: references.ObjectRef, body: bodies.RawBody) -> bodies.RawBody | None:
        old = self._items.get(ref)
        self._items[ref] = body
        return old

    def _pop(self, ref: references.ObjectRef) -> bodies.RawBody | None:
        return self._items.pop(ref, None)


class Informer:
    """
    A watch-stream consumer which mirrors the objects into a store.

    The informer runs as a never-ending task (see :meth:`run`), and notifies
    about the objects' appearance & disappearance via the callbacks:

    * ``on_add`` for every object of the initial listing and for new objects
      (i.e. ``ADDED`` events and the objects first seen in a re-listing).
    * ``on_delete`` for ``DELETED`` events and for the objects which are
      absent in a re-listing (i.e. deleted while the stream was disconnected).

    The callbacks are synchronous and should not block: the whole watch-stream
    waits for them.
    """

    def __init__(
            self,
            *,
            settings: configuration.OperatorSettings,
            context: auth.APIContext,
            resource: references.Resource = references.DEPLOYMENTS,
            namespace: references.Namespace = None,
            on_add: Callback | None = None,
            on_delete: Callback | None = None,
    ) -> None:
        super().__init__()
        self.settings = settings
        self.context = context
        self.resource = resource
        self.namespace = namespace
        self.on_add = on_add
        self.on_delete = on_delete
        self.store = Store()
        self.synced = aiotoggles.Toggle(name=f'{resource} synced')

    def has_synced(self) -> bool:
        return self.synced.is_on()

    async def wait_for_sync(self, timeout: float | None = None) -> bool:
        """
        Wait until the first listing is complete. Return ``False`` on timeout.
        """
        return await self.synced.wait_for(True, timeout=timeout)

    async def run(self, *, _iterations: int | None = None) -> None:
        """
        Watch the objects forever (or until cancelled or failed).
        """
        listed: set[references.ObjectRef] = set()
        try:
            async for raw_event in watching.infinite_watch(
                settings=self.settings,
                context=self.context,
                resource=self.resource,
                namespace=self.namespace,
                _iterations=_iterations,
            ):
                match raw_event:
                    case watching.Bookmark.LISTED:
                        self._prune(keep=listed)
                        listed = set()
                        if self.synced.is_off():
                            logger.debug(f"The cache of {self.resource} is synced: "
                                         f"{len(self.store)} objects.")
                        await self.synced.turn_to(True)
                    case {'type': None, 'object': body}:
                        ref = self._apply(cast(bodies.RawBody, body), notify_existing=False)
                        if ref is not None:
                            listed.add(ref)
                    case {'type': 'ADDED' | 'MODIFIED', 'object': body}:
                        self._apply(cast(bodies.RawBody, body),
                                    notify_existing=False,
                                    notify_new=raw_event['type'] == 'ADDED')
                    case {'type': 'DELETED', 'object': body}:
                        self._delete(cast(bodies.RawBody, body))
        finally:
            await self.synced.turn_to(False)

    def _apply(
            self,
            body: bodies.RawBody,
            *,
            notify_existing: bool,
            notify_new: bool = True,
    ) -> references.ObjectRef | None:
        try:
            ref = references.ObjectRef.from_body(body)
        except ValueError as e:
            logger.warning(f"Ignoring an unidentifiable object of {self.resource}: {e}")
            return None

        old = self.store._put(ref, body)
        if self.on_add is not None and (notify_existing if old is not None else notify_new):
            self.on_add(body)
        return ref

    def _delete(self, body: bodies.RawBody) -> None:
        try:
            ref = references.ObjectRef.from_body(body)
        except ValueError as e:
            logger.warning(f"Ignoring an unidentifiable object of {self.resource}: {e}")
            return

        self.store._pop(ref)
        if self.on_delete is not None:
            self.on_delete(body)

    def _prune(self, *, keep: Collection[references.ObjectRef]) -> None:
        # The objects deleted while disconnected are only noticed by their absence in the listing.
        for ref in [ref for ref in self.store if ref not in keep]:
            body = self.store._pop(ref)
            logger.debug(f"The object {ref} of {self.resource} has disappeared while unwatched.")
            if self.on_delete is not None and body is not None:
                self.on_delete(body)
