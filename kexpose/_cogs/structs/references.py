import dataclasses
import urllib.parse
from collections.abc import Iterator, Mapping
from typing import NamedTuple, NewType

from kexpose._cogs.structs import bodies

# A specific really existing addressable namespace (at least, the one assumed to be so).
NamespaceName = NewType('NamespaceName', str)

# A namespace reference usable in the API calls. `None` means cluster-wide API calls.
Namespace = NamespaceName | None


@dataclasses.dataclass(frozen=True, eq=False, repr=False)
class Resource:
    """
    A reference to a very specific built-in resource kind.

    It is used to form the K8s API URLs. Generally, K8s API only needs
    an API group, an API version, and a plural name of the resource.
    The kind is remembered for logging and for the bodies being created.
    """

    group: str
    """
    The resource's API group; e.g. ``"apps"``, ``"networking.k8s.io"``.
    For Core v1 API resources, an empty string: ``""``.
    """

    version: str
    """
    The resource's API version; e.g. ``"v1"``, ``"v1beta1"``, etc.
    """

    plural: str
    """
    The resource's plural name; e.g. ``"deployments"``, ``"services"``.
    It is used as an API endpoint, together with API group & version.
    """

    kind: str | None = None
    """
    The resource's kind (as in YAML files); e.g. ``"Deployment"``, ``"Service"``.
    """

    namespaced: bool = True
    """
    Whether the resource is namespaced (``True``) or cluster-scoped (``False``).
    """

    def __hash__(self) -> int:
        return hash((self.group, self.version, self.plural))

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Resource):
            self_tuple = (self.group, self.version, self.plural)
            other_tuple = (other.group, other.version, other.plural)
            return self_tuple == other_tuple
        else:
            return NotImplemented

    def __repr__(self) -> str:
        return f'{self.plural}.{self.version}.{self.group}'.strip('.')

    # Mostly for tests and logs.
    def __iter__(self) -> Iterator[str]:
        return iter((self.group, self.version, self.plural))

    @property
    def api_version(self) -> str:
        # As in "apiVersion" fields of objects: "apps/v1", or just "v1" for the core resources.
        return f'{self.group}/{self.version}' if self.group else self.version

    def get_url(
            self,
            *,
            server: str | None = None,
            namespace: Namespace = None,
            name: str | None = None,
            params: Mapping[str, str] | None = None,
    ) -> str:
        """
        Build a URL to be used with K8s API.

        If the namespace is not set, a cluster-wide URL is returned.
        For cluster-scoped resources, the namespace is ignored.

        If the name is not set, the URL for the resource list is returned.
        Otherwise (if set), the URL for the individual resource is returned.

        Params go to the query parameters (``?param1=value1&param2=value2...``).
        """
        if not self.namespaced and namespace is not None:
            raise ValueError("Specific namespaces are not supported for cluster-scoped resources.")
        if self.namespaced and namespace is None and name is not None:
            raise ValueError("Specific namespaces are required for specific namespaced resources.")

        parts: list[str | None] = [
            '/api' if self.group == '' and self.version == 'v1' else '/apis',
            self.group,
            self.version,
            'namespaces' if self.namespaced and namespace is not None else None,
            namespace if self.namespaced and namespace is not None else None,
            self.plural,
            name,
        ]

        query = urllib.parse.urlencode(params, encoding='utf-8') if params else ''
        path = '/'.join([part for part in parts if part])
        url = path + ('?' if query else '') + query
        return url if server is None else server.rstrip('/') + '/' + url.lstrip('/')


# The three resource kinds of the controller: the watched one, and two dependent ones.
DEPLOYMENTS = Resource('apps', 'v1', 'deployments', kind='Deployment')
SERVICES = Resource('', 'v1', 'services', kind='Service')
INGRESSES = Resource('networking.k8s.io', 'v1', 'ingresses', kind='Ingress')


class ObjectRef(NamedTuple):
    """
    An identity of an object in the queues and caches: its namespace & name.

    Unlike uids, it is stable across deletion and re-creation of the object
    with the same name, which is exactly what the reconciliation needs:
    the dependents are named after their primary, not bound to its uid.
    """
    namespace: NamespaceName
    name: str

    def __str__(self) -> str:
        return f'{self.namespace}/{self.name}'

    @classmethod
    def from_body(cls, body: bodies.RawBody) -> 'ObjectRef':
        """
        Extract the identity from an object's body.

        Raises ``ValueError`` for bodies without a name or a namespace,
        e.g. for malformed events or for cluster-scoped objects.
        """
        name = bodies.get_name(body)
        namespace = bodies.get_namespace(body)
        if not name or not namespace:
            raise ValueError(f"Cannot identify an object without a namespace & name: {body!r}")
        return cls(NamespaceName(namespace), name)
