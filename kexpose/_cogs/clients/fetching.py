from collections.abc import Collection

from kexpose._cogs.clients import api, auth
from kexpose._cogs.configs import configuration
from kexpose._cogs.helpers import typedefs
from kexpose._cogs.structs import bodies, references


async def read_obj(
        *,
        settings: configuration.OperatorSettings,
        context: auth.APIContext,
        resource: references.Resource,
        namespace: references.Namespace,
        name: str,
        logger: typedefs.Logger,
) -> bodies.RawBody:
    """
    Read one object directly from the API, bypassing any caches.

    Raises :class:`errors.APINotFoundError` if the object does not exist.
    """
    body: bodies.RawBody = await api.call(
        'get',
        resource.get_url(namespace=namespace, name=name),
        settings=settings,
        context=context,
        logger=logger,
    )
    return body


async def list_objs(
        *,
        settings: configuration.OperatorSettings,
        context: auth.APIContext,
        resource: references.Resource,
        namespace: references.Namespace,
        logger: typedefs.Logger,
) -> tuple[Collection[bodies.RawBody], str]:
    """
    List the objects of specific resource type.

    The cluster-scoped call is used when the controller serves all namespaces.
    Otherwise, the namespace-scoped call is used.

    The list's items have no ``kind`` & ``apiVersion`` fields in the API
    responses; they are restored from the list's ones.
    """
    rsp = await api.call(
        'get',
        resource.get_url(namespace=namespace),
        settings=settings,
        context=context,
        logger=logger,
    )

    items: list[bodies.RawBody] = []
    resource_version = rsp.get('metadata', {}).get('resourceVersion', None)
    for item in rsp.get('items', []):
        if 'kind' in rsp:
            item.setdefault('kind', rsp['kind'][:-4] if rsp['kind'][-4:] == 'List' else rsp['kind'])
        if 'apiVersion' in rsp:
            item.setdefault('apiVersion', rsp['apiVersion'])
        items.append(item)

    return items, resource_version
