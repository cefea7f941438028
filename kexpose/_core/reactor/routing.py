"""
Routing of the watch-stream notifications to the work queue.

Both the additions and the deletions are queued the same way: as keys.
Whether the key means "ensure the dependents" or "tear them down"
is decided later by the reconciler, by checking the object's existence.
No API calls are made here, so the watch-stream is never delayed.
"""
import logging

from kexpose._cogs.structs import bodies, references
from kexpose._core.actions import loggers
from kexpose._core.reactor import queueing

logger = logging.getLogger(__name__)


class EventRouter:

    def __init__(self, *, queue: queueing.WorkQueue, kind: str | None = None) -> None:
        super().__init__()
        self.queue = queue
        self.kind = kind

    def on_add(self, body: bodies.RawBody) -> None:
        self._enqueue(body, "Adding")

    def on_delete(self, body: bodies.RawBody) -> None:
        self._enqueue(body, "Deleting")

    def _enqueue(self, body: bodies.RawBody, verb: str) -> None:
        try:
            ref = references.ObjectRef.from_body(body)
        except ValueError as e:
            logger.error(f"Failed to get the key of an object: {e}")
            return

        kind = self.kind or body.get('kind') or 'object'
        loggers.ObjectLogger(ref=ref, kind=kind).debug(f"{verb} {kind.lower()}.")
        self.queue.add(ref)
