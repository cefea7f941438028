"""
The main kexpose module for all the exported functions & classes.
"""
# isort: skip_file

# Unlike all other places, where we import other modules and refer
# the functions via the modules, this is the package's top-level interface,
# as it is seen by the users and the embedding applications.

from kexpose._cogs.configs.configuration import (
    OperatorSettings,
)
from kexpose._cogs.helpers.typedefs import (
    Logger,
)
from kexpose._cogs.helpers.versions import (
    version as __version__,
)
from kexpose._cogs.structs.bodies import (
    RawEvent,
    RawBody,
    Labels,
)
from kexpose._cogs.structs.credentials import (
    LoginError,
    ConnectionInfo,
)
from kexpose._cogs.structs.references import (
    Resource,
    ObjectRef,
    DEPLOYMENTS,
    SERVICES,
    INGRESSES,
)
from kexpose._cogs.clients.errors import (
    APIError,
    APIClientError,
    APIServerError,
    APIUnauthorizedError,
    APIForbiddenError,
    APINotFoundError,
    APIConflictError,
    APITooManyRequestsError,
)
from kexpose._core.actions.loggers import (
    LogFormat,
    ObjectLogger,
    configure,
)
from kexpose._core.reactor.informing import (
    Informer,
    Store,
)
from kexpose._core.reactor.queueing import (
    WorkQueue,
    RateLimiter,
    ExponentialFailureRateLimiter,
    BucketRateLimiter,
    MaxOfRateLimiter,
)
from kexpose._core.reactor.reconciling import (
    Outcome,
    reconcile,
)
from kexpose._core.reactor.running import (
    CacheSyncError,
    spawn_tasks,
    run_tasks,
    operator,
    run,
)

__all__ = [
    'OperatorSettings',
    'Logger',
    'RawEvent', 'RawBody', 'Labels',
    'LoginError', 'ConnectionInfo',
    'Resource', 'ObjectRef', 'DEPLOYMENTS', 'SERVICES', 'INGRESSES',
    'APIError', 'APIClientError', 'APIServerError',
    'APIUnauthorizedError', 'APIForbiddenError', 'APINotFoundError',
    'APIConflictError', 'APITooManyRequestsError',
    'LogFormat', 'ObjectLogger', 'configure',
    'Informer', 'Store',
    'WorkQueue', 'RateLimiter',
    'ExponentialFailureRateLimiter', 'BucketRateLimiter', 'MaxOfRateLimiter',
    'Outcome', 'reconcile',
    'CacheSyncError', 'spawn_tasks', 'run_tasks', 'operator', 'run',
]
