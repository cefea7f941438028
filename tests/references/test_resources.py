import pytest

from kexpose._cogs.structs.references import DEPLOYMENTS, INGRESSES, SERVICES, ObjectRef, \
                                             Resource


def test_resource_equality_ignores_kinds():
    resource1 = Resource('group', 'version', 'plural', kind='Kind1')
    resource2 = Resource('group', 'version', 'plural', kind='Kind2')
    assert resource1 == resource2
    assert hash(resource1) == hash(resource2)


def test_resource_inequality():
    assert DEPLOYMENTS != SERVICES
    assert SERVICES != INGRESSES
    assert DEPLOYMENTS != ('apps', 'v1', 'deployments')


def test_resource_repr():
    assert repr(DEPLOYMENTS) == 'deployments.v1.apps'
    assert repr(SERVICES) == 'services.v1'
    assert repr(INGRESSES) == 'ingresses.v1.networking.k8s.io'


def test_resource_unpacking():
    group, version, plural = DEPLOYMENTS
    assert (group, version, plural) == ('apps', 'v1', 'deployments')


@pytest.mark.parametrize('resource, api_version, kind', [
    (DEPLOYMENTS, 'apps/v1', 'Deployment'),
    (SERVICES, 'v1', 'Service'),
    (INGRESSES, 'networking.k8s.io/v1', 'Ingress'),
])
def test_known_resources(resource, api_version, kind):
    assert resource.api_version == api_version
    assert resource.kind == kind
    assert resource.namespaced


@pytest.mark.parametrize('resource, namespace, name, expected', [
    (DEPLOYMENTS, None, None, '/apis/apps/v1/deployments'),
    (DEPLOYMENTS, 'ns1', None, '/apis/apps/v1/namespaces/ns1/deployments'),
    (DEPLOYMENTS, 'ns1', 'web', '/apis/apps/v1/namespaces/ns1/deployments/web'),
    (SERVICES, None, None, '/api/v1/services'),
    (SERVICES, 'ns1', None, '/api/v1/namespaces/ns1/services'),
    (SERVICES, 'ns1', 'web', '/api/v1/namespaces/ns1/services/web'),
    (INGRESSES, 'ns1', 'web', '/apis/networking.k8s.io/v1/namespaces/ns1/ingresses/web'),
])
def test_urls(resource, namespace, name, expected):
    assert resource.get_url(namespace=namespace, name=name) == expected


def test_url_with_server_and_params():
    url = DEPLOYMENTS.get_url(server='https://localhost:443/', namespace='ns1',
                              params={'watch': 'true', 'resourceVersion': '123'})
    assert url == 'https://localhost:443/apis/apps/v1/namespaces/ns1/deployments' \
                  '?watch=true&resourceVersion=123'


def test_url_of_a_named_object_requires_a_namespace():
    with pytest.raises(ValueError, match=r"Specific namespaces are required"):
        DEPLOYMENTS.get_url(name='web')


def test_url_of_a_clusterscoped_resource_rejects_namespaces():
    resource = Resource('', 'v1', 'namespaces', namespaced=False)
    assert resource.get_url(name='ns1') == '/api/v1/namespaces/ns1'
    with pytest.raises(ValueError, match=r"not supported for cluster-scoped"):
        resource.get_url(namespace='ns1')


def test_object_ref_basics():
    ref = ObjectRef('ns1', 'web')
    assert ref.namespace == 'ns1'
    assert ref.name == 'web'
    assert str(ref) == 'ns1/web'
    assert ref == ObjectRef('ns1', 'web')
    assert ref != ObjectRef('ns2', 'web')
    assert len({ref, ObjectRef('ns1', 'web')}) == 1


def test_object_ref_from_body():
    ref = ObjectRef.from_body({'metadata': {'name': 'web', 'namespace': 'ns1', 'uid': 'u'}})
    assert ref == ObjectRef('ns1', 'web')


@pytest.mark.parametrize('body', [
    pytest.param({}, id='no-metadata'),
    pytest.param({'metadata': {}}, id='empty-metadata'),
    pytest.param({'metadata': {'name': 'web'}}, id='no-namespace'),
    pytest.param({'metadata': {'namespace': 'ns1'}}, id='no-name'),
    pytest.param({'metadata': {'name': '', 'namespace': 'ns1'}}, id='empty-name'),
])
def test_object_ref_from_unidentifiable_bodies(body):
    with pytest.raises(ValueError, match=r"Cannot identify"):
        ObjectRef.from_body(body)
