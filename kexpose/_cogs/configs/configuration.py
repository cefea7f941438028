"""
All configuration flags, options, settings to fine-tune the controller.

All settings are grouped semantically just for convenience
(instead of a flat mega-object with all the values in it).

Some of the settings are flags, some are scalars, some are optional,
some are not (but all of them have reasonable defaults). The defaults
of the dependent resources' shapes (the port, the host, the ingress class)
are those expected by the cluster's ingress controller and DNS setup.
"""
import dataclasses
from collections.abc import Iterable


@dataclasses.dataclass
class ProcessSettings:
    """
    Settings for the OS processes: e.g. when started via CLI as `kexpose run`.
    """

    ultimate_exiting_timeout: float | None = 10 * 60
    """
    How long to wait for the graceful exit before SIGKILL'ing the controller.

    This is the last resort to make the controller exit instead of getting stuck
    at exiting due to bugs, hanging connections, unfinished tasks, etc.

    The countdown goes from when a graceful signal arrives (SIGTERM/SIGINT),
    regardless of what is happening in the graceful exiting routine.

    Measured in seconds. Set to `None` to disable (on your own risk).
    """


@dataclasses.dataclass
class NetworkingSettings:

    request_timeout: float | None = 5 * 60  # == aiohttp.client.DEFAULT_TIMEOUT
    """
    A timeout for the whole API request, from connecting to reading the reply.
    Not used in the streaming watch requests: see `WatchingSettings`.
    """

    connect_timeout: float | None = None
    """
    A timeout for establishing the connection to the API server.
    """

    error_backoffs: Iterable[float] = (1, 1, 2, 3, 5, 8)
    """
    Backoff intervals in case of connection errors, timeouts, or HTTP 5xx.

    These are retries within one API request, before the error escalates
    to the caller (e.g. the reconciler, which then re-queues the key
    with its own per-key backoff).

    To disable the in-request retries, set it to ``[]`` or ``()``.
    """


@dataclasses.dataclass
class WatchingSettings:

    namespace: str | None = None
    """
    A namespace to watch the deployments in. ``None`` means cluster-wide.
    """

    server_timeout: float | None = None
    """
    The maximum duration of one streaming request. Patched in some tests.
    If ``None``, then obey the server-side timeouts (they seem to be random).
    """

    client_timeout: float | None = None
    """
    An HTTP/HTTPS session timeout to use in watch requests.
    """

    connect_timeout: float | None = None
    """
    An HTTP/HTTPS connection timeout to use in watch requests.
    """

    reconnect_backoff: float = 0.1
    """
    How long should a pause be between watch requests (to prevent API flooding).

    After the failed listings or watch-streams, the pause is doubled
    on every consecutive failure, up to ``max_reconnect_backoff``.
    """

    max_reconnect_backoff: float = 30
    """
    The maximum pause between the reconnections after the consecutive failures.
    """

    sync_timeout: float = 60
    """
    How long to wait for the initial listing of deployments at startup.

    No workers are started until the local cache is filled. If the listing
    does not complete in time, the controller exits with an error.
    """


@dataclasses.dataclass
class QueueingSettings:
    """
    Settings for the work queue, its rate limiting, and its workers.
    """

    workers: int = 1
    """
    How many keys can be reconciled concurrently (never the same key twice).
    """

    base_delay: float = 0.005
    """
    The initial per-key backoff after the first failure; doubled on every
    consecutive failure of the same key.
    """

    max_delay: float = 1000
    """
    The maximum per-key backoff, regardless of the number of failures.
    """

    qps: float = 10.0
    """
    The overall rate of rate-limited re-queueing for all keys together.
    """

    burst: int = 100
    """
    How many rate-limited re-queues can happen at once before the rate applies.
    """

    worker_restart_delay: float = 1.0
    """
    How soon a worker is restarted if it has crashed unexpectedly.
    """

    exit_timeout: float = 5.0
    """
    How long to wait for the workers to finish the current key at exit.
    The workers that did not finish in time are cancelled.
    """


@dataclasses.dataclass
class ReconcilingSettings:

    adopt_existing: bool = True
    """
    What to do when a dependent resource to be created already exists.

    If ``True``, the existing object is read and accepted as the created one,
    even if it differs from the desired state (a warning is logged then).
    If ``False``, it is a failure, and the key is re-queued with a backoff.
    """


@dataclasses.dataclass
class ExposureSettings:
    """
    The shape of the services created for the deployments.
    """

    port_name: str = 'http'
    port: int = 80


@dataclasses.dataclass
class RoutingSettings:
    """
    The shape of the ingresses created for the services.
    """

    host: str = 'nginx.fs.co'
    path: str = '/'
    path_type: str = 'Prefix'

    ingress_class: str = 'nginx'
    """
    Put into the legacy ``kubernetes.io/ingress.class`` annotation,
    which the ingress controllers still honour.
    """


@dataclasses.dataclass
class OperatorSettings:
    process: ProcessSettings = dataclasses.field(default_factory=ProcessSettings)
    networking: NetworkingSettings = dataclasses.field(default_factory=NetworkingSettings)
    watching: WatchingSettings = dataclasses.field(default_factory=WatchingSettings)
    queueing: QueueingSettings = dataclasses.field(default_factory=QueueingSettings)
    reconciling: ReconcilingSettings = dataclasses.field(default_factory=ReconcilingSettings)
    exposure: ExposureSettings = dataclasses.field(default_factory=ExposureSettings)
    routing: RoutingSettings = dataclasses.field(default_factory=RoutingSettings)
