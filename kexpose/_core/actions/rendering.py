"""
Rendering of the dependent resources' bodies: the services and the ingresses.

The rendered bodies contain only the fields owned by the controller.
Everything else (e.g. ``clusterIP``, ``targetPort``, ``protocol``) is left
to the API server's defaults, so the objects as read back from the API
are always "bigger" than the rendered ones. For this reason, the existing
objects are compared to the desired ones only in the owned fields.
"""
from collections.abc import Mapping
from typing import Any

from kexpose._cogs.configs import configuration
from kexpose._cogs.structs import bodies, references

INGRESS_CLASS_ANNOTATION = 'kubernetes.io/ingress.class'


def build_exposure(
        *,
        ref: references.ObjectRef,
        workload: bodies.RawBody,
        settings: configuration.OperatorSettings,
) -> bodies.RawBody:
    """
    Render a service for a deployment: same name, pod-template labels as the selector.

    The labels are copied once: later changes of the deployment's labels
    are not propagated to the already existing service.
    """
    return {
        'apiVersion': references.SERVICES.api_version,
        'kind': references.SERVICES.kind or 'Service',
        'metadata': {
            'name': ref.name,
            'namespace': ref.namespace,
        },
        'spec': {
            'selector': bodies.get_template_labels(workload),
            'ports': [{
                'name': settings.exposure.port_name,
                'port': settings.exposure.port,
            }],
        },
    }


def build_routing(
        *,
        exposure: bodies.RawBody,
        settings: configuration.OperatorSettings,
) -> bodies.RawBody:
    """
    Render an ingress for a service (as created or adopted, not as desired).
    """
    name = bodies.get_name(exposure)
    namespace = bodies.get_namespace(exposure)
    return {
        'apiVersion': references.INGRESSES.api_version,
        'kind': references.INGRESSES.kind or 'Ingress',
        'metadata': {
            'name': name,
            'namespace': namespace,
            'annotations': {
                INGRESS_CLASS_ANNOTATION: settings.routing.ingress_class,
            },
        },
        'spec': {
            'rules': [{
                'host': settings.routing.host,
                'http': {
                    'paths': [{
                        'path': settings.routing.path,
                        'pathType': settings.routing.path_type,
                        'backend': {
                            'service': {
                                'name': name,
                                'port': {'number': settings.exposure.port},
                            },
                        },
                    }],
                },
            }],
        },
    }


def diff_exposure(existing: bodies.RawBody, desired: bodies.RawBody) -> list[str]:
    """
    Compare the owned fields of two services. Return the names of the mismatching ones.
    """
    mismatches: list[str] = []
    if _get(existing, 'spec', 'selector') != _get(desired, 'spec', 'selector'):
        mismatches.append('spec.selector')
    if _ports(existing) != _ports(desired):
        mismatches.append('spec.ports')
    return mismatches


def diff_routing(existing: bodies.RawBody, desired: bodies.RawBody) -> list[str]:
    """
    Compare the owned fields of two ingresses. Return the names of the mismatching ones.
    """
    mismatches: list[str] = []
    existing_class = _get(existing, 'metadata', 'annotations', INGRESS_CLASS_ANNOTATION)
    desired_class = _get(desired, 'metadata', 'annotations', INGRESS_CLASS_ANNOTATION)
    if existing_class != desired_class:
        mismatches.append(f'metadata.annotations.{INGRESS_CLASS_ANNOTATION}')
    if _rules(existing) != _rules(desired):
        mismatches.append('spec.rules')
    return mismatches


def _get(body: Mapping[str, Any], *path: str) -> Any:
    value: Any = body
    for key in path:
        value = value.get(key) if isinstance(value, Mapping) else None
    return value


def _ports(body: bodies.RawBody) -> list[tuple[Any, Any]]:
    ports = _get(body, 'spec', 'ports') or []
    return sorted((port.get('name'), port.get('port')) for port in ports)


def _rules(body: bodies.RawBody) -> list[tuple[Any, ...]]:
    # Only what is rendered: the host, the path & its type, the backend's name & port.
    rules = _get(body, 'spec', 'rules') or []
    return sorted(
        (
            rule.get('host'),
            path.get('path'),
            path.get('pathType'),
            _get(path, 'backend', 'service', 'name'),
            _get(path, 'backend', 'service', 'port', 'number'),
        )
        for rule in rules
        for path in _get(rule, 'http', 'paths') or []
    )
