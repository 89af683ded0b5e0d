import socket
import ssl
import threading
from datetime import datetime
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest
import requests

from k8smetrics.controlplane import build_component_list
from k8smetrics.controlplane_client import (
    AuthenticationMethod,
    ComponentDiscoverer,
    ControlPlaneComponentClient,
    InvalidTLSConfig,
    TLSConfig,
    parse_tls_config,
)

POD_NAME = "scheduler"
NODE_IP = "6.7.8.9"


def _pods(labels):
    def fetch():
        return {
            "pod": {
                "kube-system_kube-scheduler-minikube": {
                    "namespace": "kube-system",
                    "podName": POD_NAME,
                    "nodeName": "minikube",
                    "nodeIP": "10.0.2.15",
                    "startTime": datetime.now(),
                    "labels": labels,
                }
            }
        }

    return fetch


RUNNING_LABELS = {"k8s-app": "kube-scheduler", "extra-label": "iluvetests", "tier": "control-plane"}


@pytest.mark.parametrize(
    "labels, running, pod_name",
    [
        ({"component": "kube-scheduler"}, False, ""),
        ({"component": "kube-scheduler", "tier": "control-plane"}, True, POD_NAME),
        (RUNNING_LABELS, True, POD_NAME),
    ],
)
def test_discover(labels, running, pod_name):
    component = build_component_list()[0]
    discoverer = ComponentDiscoverer(component, None, NODE_IP, _pods(labels))
    client = discoverer.discover(0)
    assert client.is_component_running_on_node is running
    assert client.endpoint == component.endpoint
    assert client.pod_name == pod_name
    assert client.node_ip() == NODE_IP


def test_discover_sets_no_auth_when_both_false():
    component = build_component_list()[0]
    component.use_service_account_authentication = False
    component.use_mtls_authentication = False
    client = ComponentDiscoverer(component, None, NODE_IP, _pods(RUNNING_LABELS)).discover(0)
    assert client.authentication_method is AuthenticationMethod.NONE


def test_discover_sets_service_account_auth():
    component = build_component_list()[0]
    component.use_service_account_authentication = True
    client = ComponentDiscoverer(component, None, NODE_IP, _pods(RUNNING_LABELS)).discover(0)
    assert client.authentication_method is AuthenticationMethod.SERVICE_ACCOUNT


def test_discover_sets_mtls_auth_with_precedence():
    component = build_component_list()[0]
    component.use_mtls_authentication = True
    component.use_service_account_authentication = True
    client = ComponentDiscoverer(component, None, NODE_IP, _pods(RUNNING_LABELS)).discover(0)
    assert client.authentication_method is AuthenticationMethod.MTLS


def test_discover_propagates_fetch_error():
    def failing():
        raise RuntimeError("no pods")

    discoverer = ComponentDiscoverer(build_component_list()[0], None, NODE_IP, failing)
    with pytest.raises(RuntimeError, match="no pods"):
        discoverer.discover(0)


def test_authentication_method_lookup_by_value():
    method = AuthenticationMethod("Mutual TLS")
    assert method is AuthenticationMethod.MTLS
    assert str(method) == "Mutual TLS"
    assert AuthenticationMethod("None (http)") is AuthenticationMethod.NONE


class _Handler(BaseHTTPRequestHandler):
    def do_GET(self):
        self.server.seen.append((self.path, self.headers.get("Authorization")))
        body = b"ok"
        self.send_response(200)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, *args):
        pass


@pytest.fixture
def server():
    httpd = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    httpd.seen = []
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{httpd.server_address[1]}", httpd.seen
    httpd.shutdown()
    httpd.server_close()


@pytest.fixture
def closed_url():
    sock = socket.socket()
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return f"https://127.0.0.1:{port}"


def test_get_plain_endpoint(server):
    url, seen = server
    client = ControlPlaneComponentClient(endpoint=url, timeout=5)
    response = client.get("/metrics")
    assert response.status_code == 200
    assert response.text == "ok"
    assert seen == [("/metrics", None)]


def test_get_joins_endpoint_path(server):
    url, seen = server
    client = ControlPlaneComponentClient(endpoint=url + "/base/", timeout=5)
    response = client.get("/metrics")
    assert response.status_code == 200
    assert response.url.endswith("/base/metrics")
    assert seen[0][0] == "/base/metrics"


def test_get_falls_back_to_insecure_endpoint(server, closed_url):
    url, seen = server
    client = ControlPlaneComponentClient(
        endpoint=url, secure_endpoint=closed_url, insecure_fallback=True, timeout=5
    )
    assert client.get("/metrics").status_code == 200
    assert seen == [("/metrics", None)]


def test_get_without_fallback_raises(server, closed_url):
    url, seen = server
    client = ControlPlaneComponentClient(endpoint=url, secure_endpoint=closed_url, timeout=5)
    with pytest.raises(requests.ConnectionError):
        client.get("/metrics")
    assert seen == []


def test_service_account_sends_bearer_token(server, tmp_path, monkeypatch):
    url, seen = server
    token_file = tmp_path / "token"
    token_file.write_text("token\n")
    monkeypatch.setenv("KUBERNETES_SERVICE_HOST", "localhost")
    monkeypatch.setenv("KUBERNETES_SERVICE_PORT", "443")
    client = ControlPlaneComponentClient(
        endpoint=url,
        authentication_method=AuthenticationMethod.SERVICE_ACCOUNT,
        token_path=str(token_file),
        timeout=5,
    )
    client.get("/metrics")
    assert seen == [("/metrics", "Bearer token")]
    assert client.session.verify is False


def test_service_account_outside_cluster_fails(monkeypatch):
    monkeypatch.delenv("KUBERNETES_SERVICE_HOST", raising=False)
    monkeypatch.delenv("KUBERNETES_SERVICE_PORT", raising=False)
    client = ControlPlaneComponentClient(
        endpoint="http://localhost:1",
        authentication_method=AuthenticationMethod.SERVICE_ACCOUNT,
        pod_name="kube-apiserver",
    )
    with pytest.raises(RuntimeError, match="Service account") as excinfo:
        client.get("/metrics")
    assert "kube-apiserver" in str(excinfo.value)


class _FakeKubernetes:
    def __init__(self, data=None, error=None):
        self.data = data
        self.error = error
        self.calls = []

    def find_secret(self, name, namespace):
        self.calls.append((name, namespace))
        if self.error is not None:
            raise self.error
        return {"data": self.data}


def _mtls_client(k8s, namespace=""):
    return ControlPlaneComponentClient(
        endpoint="https://localhost:1",
        authentication_method=AuthenticationMethod.MTLS,
        tls_secret_name="etcd-secret",
        tls_secret_namespace=namespace,
        k8s_client=k8s,
    )


def _tls_cause(excinfo):
    return excinfo.value.__cause__.__cause__


def test_mtls_missing_cert_and_default_namespace():
    k8s = _FakeKubernetes({"key": b"k"})
    with pytest.raises(RuntimeError) as excinfo:
        _mtls_client(k8s).get("/metrics")
    cause = _tls_cause(excinfo)
    assert isinstance(cause, InvalidTLSConfig)
    assert str(cause) == "could not find TLS certificate in `cert` field in secret etcd-secret"
    assert k8s.calls == [("etcd-secret", "default")]


def test_mtls_missing_key():
    k8s = _FakeKubernetes({"cert": b"c"}, None)
    with pytest.raises(RuntimeError) as excinfo:
        _mtls_client(k8s, "kube-system").get("/metrics")
    assert str(_tls_cause(excinfo)) == "could not find TLS key in `key` field in secret etcd-secret"
    assert k8s.calls == [("etcd-secret", "kube-system")]


def test_mtls_requires_cacert_or_insecure_skip_verify():
    k8s = _FakeKubernetes({"cert": b"c", "key": b"k"})
    with pytest.raises(RuntimeError) as excinfo:
        _mtls_client(k8s).get("/metrics")
    cause = _tls_cause(excinfo)
    assert isinstance(cause, InvalidTLSConfig)
    assert str(cause).startswith("both cacert and insecureSkipVerify are not set")


def test_mtls_secret_not_found():
    k8s = _FakeKubernetes(error=KeyError("nope"))
    with pytest.raises(RuntimeError) as excinfo:
        _mtls_client(k8s).get("/metrics")
    cause = _tls_cause(excinfo)
    assert isinstance(cause, LookupError)
    assert "could not find secret etcd-secret" in str(cause)


def test_mtls_invalid_key_pair():
    k8s = _FakeKubernetes({"cert": b"junk", "key": b"junk", "insecureSkipVerify": b"TRUE"})
    with pytest.raises(RuntimeError) as excinfo:
        _mtls_client(k8s).get("/metrics")
    assert isinstance(_tls_cause(excinfo), ssl.SSLError)


def test_parse_tls_config_rejects_invalid_pem():
    with pytest.raises(ssl.SSLError):
        parse_tls_config(b"not a cert", b"not a key", None, False)


def test_tls_config_verify_settings():
    assert TLSConfig("c", "k", "ca", insecure_skip_verify=True).verify is False
    assert TLSConfig("c", "k", "ca").verify == "ca"
    assert TLSConfig("c", "k").verify is True
    assert TLSConfig("c", "k").cert == ("c", "k")