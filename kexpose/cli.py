import asyncio
import dataclasses
import functools
from collections.abc import Callable
from typing import Any

import click

from kexpose._cogs.configs import configuration
from kexpose._cogs.structs import credentials
from kexpose._core.actions import loggers
from kexpose._core.reactor import running


@dataclasses.dataclass()
class CLIControls:
    """ Controls which are impossible to pass via CLI, e.g. from tests or embedding apps. """
    ready_flag: asyncio.Event | None = None
    stop_flag: asyncio.Event | None = None
    settings: configuration.OperatorSettings | None = None


class LogFormatParamType(click.Choice):

    def __init__(self) -> None:
        super().__init__(choices=[v.name.lower() for v in loggers.LogFormat])

    def convert(self, value: Any, param: Any, ctx: Any) -> loggers.LogFormat:
        if isinstance(value, loggers.LogFormat):
            return value
        name: str = super().convert(value, param, ctx)
        return loggers.LogFormat[name.upper()]


def logging_options(fn: Callable[..., Any]) -> Callable[..., Any]:
    """ A decorator to configure logging in all commands the same way."""
    @click.option('-v', '--verbose', is_flag=True)
    @click.option('-d', '--debug', is_flag=True)
    @click.option('-q', '--quiet', is_flag=True)
    @click.option('--log-format', type=LogFormatParamType(), default='full')
    @click.option('--log-refkey', type=str)
    @click.option('--log-prefix/--no-log-prefix', default=None)
    @functools.wraps(fn)  # to preserve other opts/args
    def wrapper(verbose: bool, quiet: bool, debug: bool,
                log_format: loggers.LogFormat = loggers.LogFormat.FULL,
                log_prefix: bool | None = False,
                log_refkey: str | None = None,
                *args: Any, **kwargs: Any) -> Any:
        loggers.configure(debug=debug, verbose=verbose, quiet=quiet,
                          log_format=log_format, log_refkey=log_refkey, log_prefix=log_prefix)
        return fn(*args, **kwargs)

    return wrapper


@click.version_option(prog_name='kexpose')
@click.group(name='kexpose', context_settings=dict(
    auto_envvar_prefix='KEXPOSE',
))
def main() -> None:
    pass


@main.command()
@logging_options
@click.option('--kubeconfig', type=click.Path(dir_okay=False))
@click.option('-A', '--all-namespaces', 'clusterwide', is_flag=True)
@click.option('-n', '--namespace', type=str)
@click.option('--workers', type=click.IntRange(min=1))
@click.option('--sync-timeout', type=click.FloatRange(min=0))
@click.option('--host', type=str)
@click.option('--ingress-class', type=str)
@click.option('--strict-create', is_flag=True, default=None)
@click.option('-L', '--liveness', 'liveness_endpoint', type=str)
@click.make_pass_decorator(CLIControls, ensure=True)
def run(
        __controls: CLIControls,
        kubeconfig: str | None,
        clusterwide: bool,
        namespace: str | None,
        workers: int | None,
        sync_timeout: float | None,
        host: str | None,
        ingress_class: str | None,
        strict_create: bool | None,
        liveness_endpoint: str | None,
) -> None:
    """ Start the controller: expose the deployments via services & ingresses. """
    if namespace and clusterwide:
        raise click.UsageError("Either --namespace or --all-namespaces can be used, not both.")

    # Map the options into the settings object.
    settings = __controls.settings if __controls.settings is not None else configuration.OperatorSettings()
    if namespace:
        settings.watching.namespace = namespace
    if workers is not None:
        settings.queueing.workers = workers
    if sync_timeout is not None:
        settings.watching.sync_timeout = sync_timeout
    if host is not None:
        settings.routing.host = host
    if ingress_class is not None:
        settings.routing.ingress_class = ingress_class
    if strict_create is not None:
        settings.reconciling.adopt_existing = not strict_create

    try:
        return running.run(
            settings=settings,
            kubeconfig=kubeconfig,
            liveness_endpoint=liveness_endpoint,
            stop_flag=__controls.stop_flag,
            ready_flag=__controls.ready_flag,
        )
    except (credentials.LoginError, running.CacheSyncError) as e:
        raise click.ClickException(str(e))
