"""
The reconciliation of one key: the dependents follow the deployment's existence.

The pass is idempotent and can be repeated any number of times for the same key:

* If the deployment does not exist (as per the API, not the cache),
  its service & ingress are deleted (if they exist).
* If the deployment exists, its service is created (if it does not exist),
  and then its ingress for that service (if it does not exist).

The dependents are never updated: the selector of the service is copied from
the deployment's pod template only once, at creation.

The creation is a two-step saga without atomicity: if the ingress creation
fails after the service is created, the pass is retried later, and the service
is then adopted as existing (or the pass keeps failing in the strict mode).

All errors are reported by the outcome, not raised: every failed pass
is retried with a backoff, and the failures of one key do not affect others.
"""
import asyncio
import enum
from collections.abc import Callable, Mapping

import aiohttp

from kexpose._cogs.clients import auth, creating, deleting, errors, fetching
from kexpose._cogs.configs import configuration
from kexpose._cogs.helpers import typedefs
from kexpose._cogs.structs import bodies, references
from kexpose._core.actions import loggers, rendering

# The errors which fail one pass of one key, but not the whole controller.
TRANSIENT_ERRORS = (errors.APIError, aiohttp.ClientError, asyncio.TimeoutError)


class Outcome(enum.Enum):
    SUCCESS = 'success'
    RETRY = 'retry'


DiffFn = Callable[[bodies.RawBody, bodies.RawBody], list[str]]


async def reconcile(
        ref: references.ObjectRef,
        *,
        settings: configuration.OperatorSettings,
        context: auth.APIContext,
        store: Mapping[references.ObjectRef, bodies.RawBody],
        logger: typedefs.Logger | None = None,
) -> Outcome:
    logger = logger if logger is not None else loggers.ObjectLogger(ref=ref, kind='Deployment')
    try:
        try:
            await fetching.read_obj(
                settings=settings,
                context=context,
                resource=references.DEPLOYMENTS,
                namespace=ref.namespace,
                name=ref.name,
                logger=logger,
            )
        except errors.APINotFoundError:
            return await teardown(ref, settings=settings, context=context, logger=logger)
        except TRANSIENT_ERRORS as e:
            logger.error(f"Failed to get the deployment: {e!r}")
            return Outcome.RETRY
        else:
            return await ensure(ref, settings=settings, context=context, store=store, logger=logger)
    except Exception as e:
        logger.exception(f"Reconciliation has failed unexpectedly: {e!r}")
        return Outcome.RETRY


async def teardown(
        ref: references.ObjectRef,
        *,
        settings: configuration.OperatorSettings,
        context: auth.APIContext,
        logger: typedefs.Logger,
) -> Outcome:
    """
    Delete the dependents of an absent deployment. The absent dependents are fine.
    """
    logger.info("The deployment is absent; deleting its service & ingress.")
    outcome = Outcome.SUCCESS
    for resource in [references.SERVICES, references.INGRESSES]:
        try:
            deleted = await deleting.delete_obj(
                settings=settings,
                context=context,
                resource=resource,
                namespace=ref.namespace,
                name=ref.name,
                logger=logger,
            )
        except TRANSIENT_ERRORS as e:
            logger.error(f"Failed to delete the {resource.kind}: {e!r}")
            outcome = Outcome.RETRY
        else:
            if deleted:
                logger.info(f"The {resource.kind} is deleted.")
            else:
                logger.debug(f"The {resource.kind} is already absent.")
    return outcome


async def ensure(
        ref: references.ObjectRef,
        *,
        settings: configuration.OperatorSettings,
        context: auth.APIContext,
        store: Mapping[references.ObjectRef, bodies.RawBody],
        logger: typedefs.Logger,
) -> Outcome:
    """
    Create the service, and then the ingress of an existing deployment.
    """

    # The cache can lag behind the API: the deployment exists, but is not seen yet.
    workload = store.get(ref)
    if workload is None:
        logger.warning("The deployment is not in the cache yet; retrying later.")
        return Outcome.RETRY

    exposure = await create_or_adopt(
        ref,
        resource=references.SERVICES,
        desired=rendering.build_exposure(ref=ref, workload=workload, settings=settings),
        diff=rendering.diff_exposure,
        settings=settings,
        context=context,
        logger=logger,
    )
    if exposure is None:
        return Outcome.RETRY

    routing = await create_or_adopt(
        ref,
        resource=references.INGRESSES,
        desired=rendering.build_routing(exposure=exposure, settings=settings),
        diff=rendering.diff_routing,
        settings=settings,
        context=context,
        logger=logger,
    )
    if routing is None:
        return Outcome.RETRY

    return Outcome.SUCCESS


async def create_or_adopt(
        ref: references.ObjectRef,
        *,
        resource: references.Resource,
        desired: bodies.RawBody,
        diff: DiffFn,
        settings: configuration.OperatorSettings,
        context: auth.APIContext,
        logger: typedefs.Logger,
) -> bodies.RawBody | None:
    """
    Create an object, or adopt the existing one (if allowed). ``None`` means a failure.

    The existing objects are never modified, even if they differ from the desired state.
    """
    try:
        created = await creating.create_obj(
            settings=settings,
            context=context,
            resource=resource,
            namespace=ref.namespace,
            body=desired,
            logger=logger,
        )
    except errors.APIConflictError as e:
        if not settings.reconciling.adopt_existing:
            logger.error(f"Failed to create the {resource.kind}: it already exists: {e!r}")
            return None
    except TRANSIENT_ERRORS as e:
        logger.error(f"Failed to create the {resource.kind}: {e!r}")
        return None
    else:
        logger.info(f"The {resource.kind} is created.")
        return created

    try:
        existing = await fetching.read_obj(
            settings=settings,
            context=context,
            resource=resource,
            namespace=ref.namespace,
            name=ref.name,
            logger=logger,
        )
    except TRANSIENT_ERRORS as e:
        logger.error(f"Failed to read the existing {resource.kind}: {e!r}")
        return None

    mismatches = diff(existing, desired)
    if mismatches:
        logger.warning(f"The {resource.kind} already exists but differs in "
                       f"{', '.join(mismatches)}; leaving it as is.")
    else:
        logger.info(f"The {resource.kind} already exists as desired; adopted.")
    return existing
