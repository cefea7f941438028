"""
All the structures coming from/to the Kubernetes API.

For strict type-checking, they are detailed to the per-field level
(e.g. `TypedDict` instead of just ``Mapping[Any, Any]``) -- but only
as much as used by the controller. The objects can contain arbitrary fields
at runtime, which are not declared in the type definitions.

Everything marked "raw" is a plain unwrapped unprocessed data as JSON-decoded
from Kubernetes API, usually as retrieved in watching or fetching API calls.
"Input" is a parsed JSON as is, while "event" is an "input" without "errors".
"""
from collections.abc import Mapping
from typing import Any, Literal, TypedDict

Labels = Mapping[str, str]
Annotations = Mapping[str, str]

# ``None`` is used for the listing, when the pseudo-watch-stream is simulated.
RawInputType = Literal[None, 'ADDED', 'MODIFIED', 'DELETED', 'ERROR']
RawEventType = Literal[None, 'ADDED', 'MODIFIED', 'DELETED']


class RawMeta(TypedDict, total=False):
    uid: str
    name: str
    namespace: str
    labels: Labels
    annotations: Annotations
    resourceVersion: str
    deletionTimestamp: str
    creationTimestamp: str


class RawBody(TypedDict, total=False):
    apiVersion: str
    kind: str
    metadata: RawMeta
    spec: Mapping[str, Any]
    status: Mapping[str, Any]


class RawEvent(TypedDict, total=True):
    type: RawEventType
    object: RawBody


class RawError(TypedDict, total=False):
    apiVersion: str  # usually: Literal['v1']
    kind: str  # usually: Literal['Status']
    metadata: Mapping[Any, Any]
    code: int
    reason: str
    status: str
    message: str


class RawInput(TypedDict, total=True):
    type: RawInputType
    object: RawBody | RawError


def get_name(body: RawBody) -> str | None:
    return body.get('metadata', {}).get('name')


def get_namespace(body: RawBody) -> str | None:
    return body.get('metadata', {}).get('namespace')


def get_template_labels(body: RawBody) -> Labels:
    """
    Get the pod-template's labels of a workload (e.g. a deployment).

    The result is a new dict, so that it can be safely embedded into other
    objects without sharing the mutable state with the source object.
    """
    template = body.get('spec', {}).get('template', {})
    return dict(template.get('metadata', {}).get('labels') or {})
