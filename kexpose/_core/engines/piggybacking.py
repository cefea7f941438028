"""
Rudimentary login to the cluster: in-cluster service accounts or kubeconfigs.

The controller is not a client library, and avoids bringing too much logic
for proper authentication, especially all the complex auth-providers
and exec-plugins. Only the static credentials are supported: tokens,
basic auth, and client certificates -- enough for a controller
running in a cluster, and for a developer running it locally.

.. seealso::
    :mod:`kexpose._cogs.structs.credentials`.
"""
import logging
import os
from typing import Any

import yaml

from kexpose._cogs.helpers import typedefs
from kexpose._cogs.structs import credentials

logger = logging.getLogger(__name__)

# As per https://kubernetes.io/docs/tasks/run-application/access-api-from-pod/
# Keep as a constant to make it patchable.
SERVICE_ACCOUNT_DIR = '/var/run/secrets/kubernetes.io/serviceaccount'
SERVICE_ACCOUNT_SERVER = 'https://kubernetes.default.svc'


def login(
        *,
        kubeconfig: str | None = None,
        logger: typedefs.Logger = logger,
) -> credentials.ConnectionInfo:
    """
    Get the credentials from the first available source.

    An explicitly given kubeconfig always wins. Otherwise, the in-cluster
    service account is preferred over the developer's kubeconfig files
    (``$KUBECONFIG`` or ``~/.kube/config``).
    """
    if kubeconfig:
        logger.debug(f"Logging in via the kubeconfig: {kubeconfig}")
        info = login_with_kubeconfig(kubeconfig=kubeconfig)
    elif has_service_account():
        logger.debug("Logging in with the service account.")
        info = login_with_service_account()
    elif has_kubeconfig():
        logger.debug("Logging in via the default kubeconfig.")
        info = login_with_kubeconfig()
    else:
        info = None

    if info is None:
        raise credentials.LoginError("Cannot login: neither in-cluster, nor via kubeconfig.")
    return info


def has_service_account() -> bool:
    return os.path.exists(os.path.join(SERVICE_ACCOUNT_DIR, 'token'))


def login_with_service_account() -> credentials.ConnectionInfo | None:
    """
    A minimalistic login handler that can get raw data from a service account.
    """
    token_path = os.path.join(SERVICE_ACCOUNT_DIR, 'token')
    ns_path = os.path.join(SERVICE_ACCOUNT_DIR, 'namespace')
    ca_path = os.path.join(SERVICE_ACCOUNT_DIR, 'ca.crt')

    if os.path.exists(token_path):
        with open(token_path, encoding='utf-8') as f:
            token = f.read().strip()

        namespace: str | None = None
        if os.path.exists(ns_path):
            with open(ns_path, encoding='utf-8') as f:
                namespace = f.read().strip()

        return credentials.ConnectionInfo(
            server=SERVICE_ACCOUNT_SERVER,
            ca_path=ca_path if os.path.exists(ca_path) else None,
            token=token or None,
            default_namespace=namespace or None,
        )
    else:
        return None


def has_kubeconfig() -> bool:
    env_var_set = bool(os.environ.get('KUBECONFIG'))
    file_exists = os.path.exists(os.path.expanduser('~/.kube/config'))
    return env_var_set or file_exists


def login_with_kubeconfig(
        *,
        kubeconfig: str | None = None,
) -> credentials.ConnectionInfo | None:
    """
    A minimalistic login handler that can get raw data from a kubeconfig file.

    No parsing or sophisticated multi-step token retrieval is performed.
    The path(s) can be given explicitly, or taken from the environment.
    """

    # As per https://kubernetes.io/docs/concepts/configuration/organize-cluster-access-kubeconfig/
    kubeconfig = kubeconfig or os.environ.get('KUBECONFIG')
    if not kubeconfig and os.path.exists(os.path.expanduser('~/.kube/config')):
        kubeconfig = '~/.kube/config'
    if not kubeconfig:
        return None

    paths = [path.strip() for path in kubeconfig.split(os.pathsep)]
    paths = [os.path.expanduser(path) for path in paths if path]

    # As prescribed: if the file is absent or non-deserialisable, then fail. The first value wins.
    current_context: str | None = None
    contexts: dict[Any, Any] = {}
    clusters: dict[Any, Any] = {}
    users: dict[Any, Any] = {}
    for path in paths:

        with open(path, encoding='utf-8') as f:
            config = yaml.safe_load(f.read()) or {}

        if current_context is None:
            current_context = config.get('current-context')
        for item in config.get('contexts') or []:
            if item['name'] not in contexts:
                contexts[item['name']] = item.get('context') or {}
        for item in config.get('clusters') or []:
            if item['name'] not in clusters:
                clusters[item['name']] = item.get('cluster') or {}
        for item in config.get('users') or []:
            if item['name'] not in users:
                users[item['name']] = item.get('user') or {}

    # Once fully parsed, use the current context only.
    if current_context is None:
        raise credentials.LoginError('Current context is not set in kubeconfigs.')
    try:
        context = contexts[current_context]
        cluster = clusters[context['cluster']]
        user = users[context['user']] if context.get('user') else {}
    except KeyError as e:
        raise credentials.LoginError(f"Kubeconfig is incomplete: {e} is not found.") from e

    # Map the retrieved fields into the credentials object.
    return credentials.ConnectionInfo(
        server=cluster.get('server'),
        ca_path=cluster.get('certificate-authority'),
        ca_data=cluster.get('certificate-authority-data'),
        insecure=cluster.get('insecure-skip-tls-verify'),
        certificate_path=user.get('client-certificate'),
        certificate_data=user.get('client-certificate-data'),
        private_key_path=user.get('client-key'),
        private_key_data=user.get('client-key-data'),
        username=user.get('username'),
        password=user.get('password'),
        token=user.get('token'),
        default_namespace=context.get('namespace'),
    )
