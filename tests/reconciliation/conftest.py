import copy

import pytest

from kexpose._cogs.clients import creating, deleting, errors, fetching
from kexpose._cogs.structs.references import DEPLOYMENTS


class FakeCluster:
    """
    An in-memory API: objects by resource & namespace & name, with failures on demand.

    The failures are injected per verb & resource, and are raised on every call
    until cleared. All calls are recorded for the assertions on the call order.
    """

    def __init__(self):
        super().__init__()
        self.objects = {}
        self.failures = {}
        self.calls = []

    def put(self, resource, body):
        meta = body['metadata']
        self.objects[resource.plural, meta['namespace'], meta['name']] = copy.deepcopy(body)

    def get(self, resource, ref):
        return self.objects.get((resource.plural, ref.namespace, ref.name))

    def fail(self, verb, resource, exc):
        self.failures[verb, resource.plural] = exc

    def _check(self, verb, resource, namespace, name):
        self.calls.append((verb, resource.plural, namespace, name))
        exc = self.failures.get((verb, resource.plural))
        if exc is not None:
            raise exc

    async def read_obj(self, *, settings, context, resource, namespace, name, logger):
        self._check('read', resource, namespace, name)
        body = self.objects.get((resource.plural, namespace, name))
        if body is None:
            raise errors.APINotFoundError(None, status=404)
        return copy.deepcopy(body)

    async def create_obj(self, *, settings, context, resource,
                         namespace=None, name=None, body=None, logger):
        body = copy.deepcopy(body)
        name = name or body['metadata']['name']
        namespace = namespace or body['metadata']['namespace']
        self._check('create', resource, namespace, name)
        key = (resource.plural, namespace, name)
        if key in self.objects:
            raise errors.APIConflictError(None, status=409)
        body['metadata'].update(namespace=namespace, name=name, uid=f'uid-{len(self.calls)}')
        self.objects[key] = body
        return copy.deepcopy(body)

    async def delete_obj(self, *, settings, context, resource, namespace, name, logger):
        self._check('delete', resource, namespace, name)
        return self.objects.pop((resource.plural, namespace, name), None) is not None


@pytest.fixture()
def cluster(mocker):
    cluster = FakeCluster()
    mocker.patch.object(fetching, 'read_obj', cluster.read_obj)
    mocker.patch.object(creating, 'create_obj', cluster.create_obj)
    mocker.patch.object(deleting, 'delete_obj', cluster.delete_obj)
    return cluster


@pytest.fixture()
def workload(ref):
    return {
        'apiVersion': 'apps/v1',
        'kind': 'Deployment',
        'metadata': {'name': ref.name, 'namespace': ref.namespace},
        'spec': {
            'selector': {'matchLabels': {'app': 'web'}},
            'template': {
                'metadata': {'labels': {'app': 'web'}},
                'spec': {'containers': [{'name': 'nginx', 'image': 'nginx'}]},
            },
        },
    }


@pytest.fixture()
def store(ref, workload):
    """ The informer's cache, as if the deployment is already seen. """
    return {ref: workload}


@pytest.fixture()
def deployed(cluster, workload):
    """ The deployment exists in the cluster (as per the API). """
    cluster.put(DEPLOYMENTS, workload)
    return workload
