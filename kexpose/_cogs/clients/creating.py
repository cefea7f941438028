from typing import cast

from kexpose._cogs.clients import api, auth
from kexpose._cogs.configs import configuration
from kexpose._cogs.helpers import typedefs
from kexpose._cogs.structs import bodies, references


async def create_obj(
        *,
        settings: configuration.OperatorSettings,
        context: auth.APIContext,
        resource: references.Resource,
        namespace: references.Namespace = None,
        name: str | None = None,
        body: bodies.RawBody | None = None,
        logger: typedefs.Logger,
) -> bodies.RawBody:
    """
    Create a resource.

    Raises :class:`errors.APIConflictError` if it already exists.
    """
    body = body if body is not None else {}
    if namespace is not None:
        body.setdefault('metadata', {}).setdefault('namespace', namespace)
    if name is not None:
        body.setdefault('metadata', {}).setdefault('name', name)

    namespace = cast(references.Namespace, body.get('metadata', {}).get('namespace'))
    created_body: bodies.RawBody = await api.call(
        'post',
        resource.get_url(namespace=namespace),
        payload=body,
        settings=settings,
        context=context,
        logger=logger,
    )
    return created_body
