from kexpose._cogs.clients import api, auth, errors
from kexpose._cogs.configs import configuration
from kexpose._cogs.helpers import typedefs
from kexpose._cogs.structs import references


async def delete_obj(
        *,
        settings: configuration.OperatorSettings,
        context: auth.APIContext,
        resource: references.Resource,
        namespace: references.Namespace,
        name: str,
        logger: typedefs.Logger,
) -> bool:
    """
    Delete a resource, if it exists.

    Returns ``True`` if the object was deleted, or ``False`` if it was absent.
    The absence is not an error: the desired state is reached either way.
    All other errors are escalated.
    """
    try:
        await api.call(
            'delete',
            resource.get_url(namespace=namespace, name=name),
            payload={'propagationPolicy': 'Background'},
            settings=settings,
            context=context,
            logger=logger,
        )
    except errors.APINotFoundError:
        return False
    else:
        return True
