"""Control plane components the integration fetches metrics from."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable
from urllib.parse import urlsplit

from k8smetrics.definition import SpecGroups


class ComponentName(str, Enum):
    """Names of the control plane components."""

    SCHEDULER = "scheduler"
    ETCD = "etcd"
    CONTROLLER_MANAGER = "controller-manager"
    API_SERVER = "api-server"

    def __str__(self) -> str:
        return self.value


@dataclass
class Component:
    """A control plane component and how to reach it. Endpoints are URL strings."""

    name: ComponentName
    skip: bool = False
    skip_reason: str = ""
    label_value: str = ""
    tls_secret_name: str = ""
    tls_secret_namespace: str = ""
    endpoint: str = ""
    secure_endpoint: str = ""
    insecure_fallback: bool = False
    use_service_account_authentication: bool = False
    use_mtls_authentication: bool = False
    specs: SpecGroups = field(default_factory=dict)
    queries: list[Any] = field(default_factory=list)
    labels: list[dict[str, str]] = field(default_factory=list)


ComponentOption = Callable[[list[Component]], None]
"""Configures a list of components in place."""


def find_component_by_name(name: ComponentName | str, components: list[Component]) -> Component | None:
    """Return the component with the given name, or None."""
    return next((c for c in components if c.name == name), None)


def _require(name: ComponentName | str, components: list[Component]) -> Component:
    component = find_component_by_name(name, components)
    if component is None:
        raise LookupError(f"expected component {str(name)} in list of components, but not found")
    return component


def with_etcd_tls_config(etcd_tls_secret_name: str, etcd_tls_secret_namespace: str) -> ComponentOption:
    """Make etcd use mutual TLS with credentials stored in the given secret.

    The secret holds "cert" and "key", and "cacert" or "insecureSkipVerify".
    """

    def apply(components: list[Component]) -> None:
        etcd = _require(ComponentName.ETCD, components)
        etcd.tls_secret_name = etcd_tls_secret_name
        etcd.tls_secret_namespace = etcd_tls_secret_namespace
        etcd.use_mtls_authentication = True

    return apply


def with_api_server_secure_port(port: str) -> ComponentOption:
    """Query the API server over HTTPS on ``port``, authenticated by service account token."""

    def apply(components: list[Component]) -> None:
        api_server = _require(ComponentName.API_SERVER, components)
        api_server.use_service_account_authentication = True
        api_server.endpoint = f"https://localhost:{port}"

    return apply


_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def _parse_url(endpoint_url: str) -> str:
    if _CONTROL_CHARS.search(endpoint_url):
        raise ValueError("invalid control character in URL")
    parts = urlsplit(endpoint_url)
    parts.port  # raises ValueError for an invalid port
    return parts.geturl()


def with_endpoint_url(name: ComponentName | str, endpoint_url: str) -> ComponentOption:
    """Make a component use a specific endpoint; HTTPS endpoints use service account auth."""

    def apply(components: list[Component]) -> None:
        component = _require(name, components)
        try:
            parsed = _parse_url(endpoint_url)
        except ValueError as err:
            raise ValueError(
                f"Endpoint URL {endpoint_url!r} for component {str(name)} is not a valid URL"
            ) from err
        component.use_service_account_authentication = urlsplit(parsed).scheme.lower() == "https"
        if component.use_service_account_authentication:
            component.secure_endpoint = parsed
        else:
            component.endpoint = parsed

    return apply


def _default_components() -> list[Component]:
    return [
        Component(
            name=ComponentName.SCHEDULER,
            labels=[
                {"k8s-app": "kube-scheduler"},
                {"tier": "control-plane", "component": "kube-scheduler"},
                {"app": "openshift-kube-scheduler", "scheduler": "true"},
            ],
            endpoint="http://localhost:10251",
        ),
        Component(
            name=ComponentName.ETCD,
            labels=[
                {"k8s-app": "etcd-manager-main"},
                {"tier": "control-plane", "component": "etcd"},
                {"k8s-app": "etcd"},
            ],
            endpoint="https://127.0.0.1:4001",
        ),
        Component(
            name=ComponentName.CONTROLLER_MANAGER,
            labels=[
                {"k8s-app": "kube-controller-manager"},
                {"tier": "control-plane", "component": "kube-controller-manager"},
                {"app": "kube-controller-manager", "kube-controller-manager": "true"},
                {"app": "controller-manager", "controller-manager": "true"},
            ],
            endpoint="http://localhost:10252",
        ),
        Component(
            name=ComponentName.API_SERVER,
            labels=[
                {"k8s-app": "kube-apiserver"},
                {"tier": "control-plane", "component": "kube-apiserver"},
                {"app": "openshift-kube-apiserver", "apiserver": "true"},
            ],
            use_service_account_authentication=True,
            insecure_fallback=True,
            endpoint="http://localhost:8080",
            secure_endpoint="https://localhost:443",
        ),
    ]


def _validate(components: list[Component]) -> None:
    etcd = find_component_by_name(ComponentName.ETCD, components)
    if etcd is not None and not etcd.tls_secret_name:
        etcd.skip = True
        etcd.skip_reason = "etcd requires TLS configuration, none given"


def build_component_list(*args: ComponentOption) -> list[Component]:
    """Return the components to monitor, configured by the given options."""
    components = _default_components()
    for option in args:
        option(components)
    _validate(components)
    return components