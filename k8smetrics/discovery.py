"""Interfaces for discovering and talking to services in a Kubernetes cluster."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class HTTPGetter(ABC):
    """Something that performs HTTP GET requests against a discovered endpoint."""

    @abstractmethod
    def get(self, path: str) -> Any:
        """Send a GET request for ``path`` and return the response."""


class NodeIPGetter(ABC):
    """Something that knows the IP of the node it was discovered on."""

    @abstractmethod
    def node_ip(self) -> str:
        """Return the discovered node IP."""


class HTTPClient(HTTPGetter, NodeIPGetter):
    """A client connected to a discovered Kubernetes service."""


class Discoverer(ABC):
    """Discovers the endpoint of a service in the Kubernetes ecosystem."""

    @abstractmethod
    def discover(self, timeout: float) -> HTTPClient:
        """Return a client for the discovered service; raise on failure."""


class MultiDiscoverer(ABC):
    """Discovers several endpoints at once, e.g. more than one KSM instance."""

    @abstractmethod
    def discover(self, timeout: float) -> list[HTTPClient]:
        """Return clients for every discovered service; raise on failure."""


class Kubernetes(ABC):
    """Common operations against the Kubernetes API."""

    @abstractmethod
    def find_node(self, name: str) -> Any:
        """Return the node with the given name."""

    @abstractmethod
    def find_pods_by_label(self, namespace: str, label_selector: Any) -> Any:
        """Return the pods matching the label selector."""

    @abstractmethod
    def find_services_by_label(self, namespace: str, label_selector: Any) -> Any:
        """Return the services matching the label selector."""

    @abstractmethod
    def list_services(self, namespace: str) -> Any:
        """Return all services in the namespace."""

    @abstractmethod
    def config(self) -> Any:
        """Return the configuration of the API client."""

    @abstractmethod
    def secure_http_client(self, timeout: float) -> Any:
        """Return an HTTP client configured with timeout and CA certificate."""

    @abstractmethod
    def find_secret(self, name: str, namespace: str) -> Any:
        """Return the secret with the given name."""

    @abstractmethod
    def server_version(self) -> Any:
        """Return the Kubernetes server version."""