"""Discovery of control plane components on a node and clients to query them."""

from __future__ import annotations

import logging
import os
import posixpath
import shutil
import ssl
import tempfile
import weakref
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping
from urllib.parse import urlsplit, urlunsplit

import requests

from k8smetrics.client import TimeoutSession
from k8smetrics.controlplane import Component
from k8smetrics.data import FetchFunc
from k8smetrics.definition import RawGroups
from k8smetrics.discovery import Discoverer, HTTPClient

_log = logging.getLogger(__name__)

POD_ENTITY_TYPE = "pod"
SERVICE_ACCOUNT_TOKEN_PATH = "/var/run/secrets/kubernetes.io/serviceaccount/token"


class AuthenticationMethod(str, Enum):
    """How requests to a control plane component are authenticated."""

    NONE = "None (http)"
    MTLS = "Mutual TLS"
    SERVICE_ACCOUNT = "Service account (Bearer token)"

    def __str__(self) -> str:
        return self.value


class InvalidTLSConfig(ValueError):
    """The TLS configuration stored in a secret is incomplete."""


@dataclass
class TLSConfig:
    """Client certificate and server verification settings, backed by files on disk."""

    cert_file: str
    key_file: str
    ca_file: str | None = None
    insecure_skip_verify: bool = False
    _directory: str | None = field(default=None, repr=False, compare=False)

    @property
    def cert(self) -> tuple[str, str]:
        """The client certificate in the form a requests session expects."""
        return self.cert_file, self.key_file

    @property
    def verify(self) -> bool | str:
        """The server verification setting in the form a requests session expects."""
        if self.insecure_skip_verify:
            return False
        return self.ca_file or True


def _write(directory: str, name: str, content: bytes) -> str:
    path = os.path.join(directory, name)
    with open(path, "wb") as handle:
        handle.write(content)
    return path


def parse_tls_config(
    cert_pem: bytes, key_pem: bytes, cacert_pem: bytes | None, insecure_skip_verify: bool
) -> TLSConfig:
    """Build a TLS configuration from PEM blocks; raise ssl.SSLError if the pair is invalid."""
    directory = tempfile.mkdtemp(prefix="k8smetrics-tls-")
    try:
        cert_file = _write(directory, "cert.pem", cert_pem)
        key_file = _write(directory, "key.pem", key_pem)
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        context.load_cert_chain(cert_file, key_file)
        ca_file = _write(directory, "ca.pem", cacert_pem) if cacert_pem else None
    except BaseException:
        shutil.rmtree(directory, ignore_errors=True)
        raise
    config = TLSConfig(cert_file, key_file, ca_file, insecure_skip_verify, directory)
    weakref.finalize(config, shutil.rmtree, directory, True)
    return config


def _join_path(base: str, url_path: str) -> str:
    joined = "/".join(part for part in (base, url_path) if part)
    if not joined:
        return ""
    cleaned = posixpath.normpath(joined)
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


def _build_url(endpoint: str, url_path: str) -> str:
    parts = urlsplit(endpoint)
    return urlunsplit(parts._replace(path=_join_path(parts.path, url_path)))


def _as_bytes(value: Any) -> bytes:
    return value.encode() if isinstance(value, str) else bytes(value)


def _secret_data(secret: Any) -> Mapping[str, Any]:
    data = getattr(secret, "data", None)
    if data is not None:
        return data
    if isinstance(secret, Mapping):
        return secret.get("data", secret)
    raise InvalidTLSConfig("secret holds no data")


class ControlPlaneComponentClient(HTTPClient):
    """Queries a control plane component, choosing authentication from its configuration.

    When the secure endpoint fails and insecure fallback is on, the plain endpoint is tried.
    """

    def __init__(
        self,
        *,
        endpoint: str = "",
        secure_endpoint: str = "",
        authentication_method: AuthenticationMethod = AuthenticationMethod.NONE,
        timeout: float | None = None,
        tls_secret_name: str = "",
        tls_secret_namespace: str = "",
        logger: logging.Logger | None = None,
        is_component_running_on_node: bool = False,
        k8s_client: Any = None,
        node_ip: str = "",
        pod_name: str = "",
        insecure_fallback: bool = False,
        token_path: str = SERVICE_ACCOUNT_TOKEN_PATH,
    ) -> None:
        self.endpoint = endpoint
        self.secure_endpoint = secure_endpoint
        self.authentication_method = authentication_method
        self.session = TimeoutSession(timeout)
        self.tls_secret_name = tls_secret_name
        self.tls_secret_namespace = tls_secret_namespace
        self.logger = logger or _log
        self.is_component_running_on_node = is_component_running_on_node
        self.k8s_client = k8s_client
        self._node_ip = node_ip
        self.pod_name = pod_name
        self.insecure_fallback = insecure_fallback
        self.token_path = token_path
        self._tls_config: TLSConfig | None = None

    def get(self, url_path: str) -> requests.Response:
        endpoint = self.secure_endpoint
        using_secure_endpoint = True
        if not endpoint:
            endpoint = self.endpoint
            using_secure_endpoint = False

        url = _build_url(endpoint, url_path)

        try:
            self._configure_authentication()
        except Exception as err:
            raise RuntimeError(
                f"could not configure request for authentication method "
                f"{self.authentication_method}: {err}"
            ) from err

        self.logger.debug(
            "Calling endpoint: %s, authentication method: %s", url, self.authentication_method
        )
        try:
            return self.session.get(url)
        except requests.RequestException as err:
            if not (using_secure_endpoint and self.insecure_fallback):
                raise
            self.logger.debug("Error when calling secure endpoint: %s", err)
            self.logger.debug("Falling back to insecure endpoint")
            return self.session.get(_build_url(self.endpoint, url_path))

    def node_ip(self) -> str:
        return self._node_ip

    def _configure_authentication(self) -> None:
        session = self.session
        session.cert = None
        session.verify = True
        session.headers.pop("Authorization", None)

        if self.authentication_method is AuthenticationMethod.MTLS:
            try:
                self._tls_config = self._tls_config_from_secret()
            except Exception as err:
                raise RuntimeError(f"could not load TLS configuration: {err}") from err
            session.cert = self._tls_config.cert
            session.verify = self._tls_config.verify
        elif self.authentication_method is AuthenticationMethod.SERVICE_ACCOUNT:
            try:
                token = self._in_cluster_token()
            except Exception as err:
                raise RuntimeError(
                    f"could not create in cluster Kubernetes configuration to query pod: "
                    f"{self.pod_name}: {err}"
                ) from err
            session.verify = False
            session.headers["Authorization"] = f"Bearer {token}"

    def _in_cluster_token(self) -> str:
        if not os.environ.get("KUBERNETES_SERVICE_HOST") or not os.environ.get(
            "KUBERNETES_SERVICE_PORT"
        ):
            raise RuntimeError(
                "unable to load in-cluster configuration, KUBERNETES_SERVICE_HOST and "
                "KUBERNETES_SERVICE_PORT must be defined"
            )
        with open(self.token_path, encoding="utf-8") as handle:
            return handle.read().strip()

    def _tls_config_from_secret(self) -> TLSConfig:
        namespace = self.tls_secret_namespace
        if not namespace:
            self.logger.debug(
                "TLS Secret name configured, but not TLS Secret namespace. "
                "Defaulting to `default` namespace."
            )
            namespace = "default"

        try:
            secret = self.k8s_client.find_secret(self.tls_secret_name, namespace)
        except Exception as err:
            raise LookupError(
                f"could not find secret {self.tls_secret_name} containing TLS configuration: {err}"
            ) from err

        data = _secret_data(secret)
        if "cert" not in data:
            raise InvalidTLSConfig(
                f"could not find TLS certificate in `cert` field in secret {self.tls_secret_name}"
            )
        if "key" not in data:
            raise InvalidTLSConfig(
                f"could not find TLS key in `key` field in secret {self.tls_secret_name}"
            )
        if "cacert" not in data and "insecureSkipVerify" not in data:
            raise InvalidTLSConfig(
                "both cacert and insecureSkipVerify are not set. One of them need to be set "
                "to be able to call ETCD metrics"
            )

        insecure_skip_verify = False
        if "insecureSkipVerify" in data:
            insecure_skip_verify = _as_bytes(data["insecureSkipVerify"]).decode().lower() == "true"

        cacert = _as_bytes(data["cacert"]) if "cacert" in data else None
        return parse_tls_config(
            _as_bytes(data["cert"]), _as_bytes(data["key"]), cacert, insecure_skip_verify
        )


class ComponentDiscoverer(Discoverer):
    """Finds whether a control plane component runs on this node and builds its client."""

    def __init__(
        self,
        component: Component,
        logger: logging.Logger | None,
        node_ip: str,
        pods_fetcher: FetchFunc,
        k8s_client: Any = None,
    ) -> None:
        self.component = component
        self.logger = logger or _log
        self.node_ip = node_ip
        self.pods_fetcher = pods_fetcher
        self.k8s_client = k8s_client

    def discover(self, timeout: float) -> ControlPlaneComponentClient:
        node_pods = self.pods_fetcher()
        pod_name, running = self._find_component_on_node(node_pods)

        component = self.component
        if component.use_mtls_authentication:
            method = AuthenticationMethod.MTLS
        elif component.use_service_account_authentication:
            method = AuthenticationMethod.SERVICE_ACCOUNT
        else:
            method = AuthenticationMethod.NONE

        return ControlPlaneComponentClient(
            endpoint=component.endpoint,
            secure_endpoint=component.secure_endpoint,
            tls_secret_name=component.tls_secret_name,
            tls_secret_namespace=component.tls_secret_namespace,
            insecure_fallback=component.insecure_fallback,
            is_component_running_on_node=running,
            pod_name=pod_name,
            authentication_method=method,
            logger=self.logger,
            node_ip=self.node_ip,
            k8s_client=self.k8s_client,
            timeout=timeout,
        )

    def _find_component_on_node(self, node_pods: RawGroups) -> tuple[str, bool]:
        for pod_data in (node_pods.get(POD_ENTITY_TYPE) or {}).values():
            pod_labels = pod_data.get("labels")
            if not isinstance(pod_labels, Mapping):
                continue
            for label_set in self.component.labels:
                if not all(pod_labels.get(key, "") == value for key, value in label_set.items()):
                    continue
                pod_name = pod_data.get("podName")
                if not isinstance(pod_name, str):
                    continue
                return pod_name, True
        return "", False