"""Querying the Kubernetes API server for node information and server version."""

from __future__ import annotations

import dataclasses
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Mapping

from k8smetrics.cached import DiscoveryCacherConfig, expired


@dataclass
class VersionInfo:
    """Version of a Kubernetes server, as reported by its /version endpoint."""

    major: str = ""
    minor: str = ""
    git_version: str = ""
    git_commit: str = ""
    git_tree_state: str = ""
    build_date: str = ""
    go_version: str = ""
    compiler: str = ""
    platform: str = ""

    _KEYS = {
        "major": "major",
        "minor": "minor",
        "gitVersion": "git_version",
        "gitCommit": "git_commit",
        "gitTreeState": "git_tree_state",
        "buildDate": "build_date",
        "goVersion": "go_version",
        "compiler": "compiler",
        "platform": "platform",
    }

    def __str__(self) -> str:
        return self.git_version

    def to_dict(self) -> dict[str, str]:
        """Return the version in the API's JSON form."""
        return {key: getattr(self, attr) for key, attr in self._KEYS.items()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> VersionInfo:
        """Build a version from the API's JSON form; unknown keys are ignored."""
        return cls(**{attr: str(data[key]) for key, attr in cls._KEYS.items() if key in data})


@dataclass
class NodeInfo:
    """Information about a specific node."""

    node_name: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    allocatable: dict[str, Any] = field(default_factory=dict)
    capacity: dict[str, Any] = field(default_factory=dict)
    conditions: list[dict[str, Any]] = field(default_factory=list)
    unschedulable: bool = False
    kubelet_version: str = ""

    def is_master_node(self) -> bool:
        """Tell whether the node carries the labels that mark a master node."""
        if self.labels.get("kubernetes.io/role") == "master":
            return True
        return "node-role.kubernetes.io/master" in self.labels

    def to_dict(self) -> dict[str, Any]:
        """Return a deep copy of the node info as plain data."""
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> NodeInfo:
        """Build node info from what ``to_dict`` returned."""
        names = {f.name for f in dataclasses.fields(cls)}
        unknown = set(data) - names
        if unknown:
            raise TypeError(f"unknown node info fields: {sorted(unknown)}")
        copied = dataclasses.asdict(cls(**data))
        return cls(**copied)


class Client(ABC):
    """Queries the Kubernetes API server."""

    @abstractmethod
    def get_node_info(self, node_name: str) -> NodeInfo:
        """Return information about the given node; raise when it cannot be found."""

    @abstractmethod
    def get_server_version(self) -> VersionInfo:
        """Return the Kubernetes server version."""


def _node_info_from_object(node: Mapping[str, Any]) -> NodeInfo:
    metadata = node.get("metadata") or {}
    status = node.get("status") or {}
    spec = node.get("spec") or {}
    return NodeInfo(
        node_name=metadata.get("name", ""),
        labels=dict(metadata.get("labels") or {}),
        allocatable=dict(status.get("allocatable") or {}),
        capacity=dict(status.get("capacity") or {}),
        conditions=[dict(c) for c in status.get("conditions") or []],
        unschedulable=bool(spec.get("unschedulable", False)),
        kubelet_version=(status.get("nodeInfo") or {}).get("kubeletVersion", ""),
    )


class KubernetesClient(Client):
    """API server client backed by a Kubernetes API client.

    Nodes are read in the API's JSON form.
    """

    def __init__(self, k8s_client: Any) -> None:
        self._k8s_client = k8s_client

    def get_server_version(self) -> VersionInfo:
        version = self._k8s_client.server_version()
        if isinstance(version, Mapping):
            return VersionInfo.from_dict(version)
        return version

    def get_node_info(self, node_name: str) -> NodeInfo:
        try:
            node = self._k8s_client.find_node(node_name)
        except Exception as err:
            raise LookupError(
                f"could not find node information for nodeName='{node_name}': {err}"
            ) from err
        return _node_info_from_object(node)


class FakeAPIServer(Client):
    """In-memory API server holding node information by node name."""

    def __init__(self, mem: dict[str, NodeInfo] | None = None) -> None:
        self.mem: dict[str, NodeInfo] = mem if mem is not None else {}

    def get_node_info(self, node_name: str) -> NodeInfo:
        try:
            return self.mem[node_name]
        except KeyError:
            raise LookupError(f"could not find node info for: {node_name}") from None

    def get_server_version(self) -> VersionInfo:
        return VersionInfo()


class TimeProvider(ABC):
    """Supplies the current time as a Unix timestamp."""

    @abstractmethod
    def time(self) -> float:
        """Return the current time."""


class CurrentTimeProvider(TimeProvider):
    """Returns the real current time."""

    def time(self) -> float:
        return time.time()


class FileCacheClient(Client):
    """Wraps a Client and caches its responses for the configured TTL."""

    _VERSION_KEY = "k8sVersion"

    def __init__(
        self,
        client: Client,
        config: DiscoveryCacherConfig,
        time_provider: TimeProvider | None = None,
    ) -> None:
        self._client = client
        self._cache = config.storage
        self._ttl = config.ttl
        self._ttl_jitter = config.ttl_jitter
        self._time_provider = time_provider or CurrentTimeProvider()

    @staticmethod
    def _key(kind: type, name: str) -> str:
        return f"{kind.__name__}.{name}"

    def _load(self, kind: type, name: str) -> Any:
        try:
            created, payload = self._cache.read(self._key(kind, name))
            loaded = kind.from_dict(payload)
        except (LookupError, OSError, ValueError, TypeError):
            return None
        if expired(self._time_provider.time(), created, self._ttl, self._ttl_jitter):
            return None
        return loaded

    def _store(self, obj: Any, name: str) -> None:
        self._cache.write(self._key(type(obj), name), obj.to_dict())

    def get_node_info(self, node_name: str) -> NodeInfo:
        cached = self._load(NodeInfo, node_name)
        if cached is not None:
            return cached
        node = self._client.get_node_info(node_name)
        self._store(node, node.node_name)
        return node

    def get_server_version(self) -> VersionInfo:
        cached = self._load(VersionInfo, self._VERSION_KEY)
        if cached is not None:
            return cached
        version = self._client.get_server_version()
        self._store(version, self._VERSION_KEY)
        return version