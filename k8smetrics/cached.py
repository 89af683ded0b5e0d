"""Discovery wrappers that cache discovered endpoints with a TTL."""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from k8smetrics.discovery import Discoverer, HTTPClient, MultiDiscoverer

_log = logging.getLogger(__name__)


class Storage:
    """Key-value cache that records the Unix time at which each entry was written.

    Entries are kept in memory by reference; subclasses may persist them elsewhere.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[int, Any]] = {}

    def read(self, key: str) -> tuple[int, Any]:
        """Return ``(creation_timestamp, value)``; raise KeyError when missing."""
        try:
            return self._entries[key]
        except KeyError:
            raise KeyError(f"{key!r} not found in cache") from None

    def write(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key``, stamped with the current time."""
        self._entries[key] = (int(self._clock()), value)

    def delete(self, key: str) -> None:
        """Remove ``key`` if present."""
        self._entries.pop(key, None)


@dataclass
class DiscoveryCacherConfig:
    """Common settings of discovery cachers. ``ttl`` is in seconds."""

    storage: Storage
    ttl: float = 0.0
    ttl_jitter: int = 0
    logger: logging.Logger = field(default_factory=lambda: _log)


def expired(current_time: float, creation_timestamp: int, ttl: float, jitter_max_percentage: int) -> bool:
    """Tell whether an object created at ``creation_timestamp`` has outlived ``ttl``.

    A non-zero jitter moves the TTL randomly by up to that percentage either way,
    so caches of many clients do not all expire at once.
    """
    jitter = jitter_max_percentage / 100
    multiplier = jitter * random.uniform(-1.0, 1.0) + 1
    ttl_with_jitter = int(ttl * multiplier)
    return current_time - creation_timestamp > ttl_with_jitter


def _stamp(timestamp: int) -> str:
    return str(datetime.fromtimestamp(timestamp))


Composer = Callable[[Any, "DiscoveryCacher", float], HTTPClient]
Decomposer = Callable[[HTTPClient], Any]
MultiComposer = Callable[[Any, "MultiDiscoveryCacher", float], "list[HTTPClient]"]
MultiDecomposer = Callable[["list[HTTPClient]"], Any]


@dataclass
class DiscoveryCacher(Discoverer):
    """Reads a discovered client from the cache, discovering it again when missing or stale.

    Not thread-safe.
    """

    config: DiscoveryCacherConfig
    discoverer: Discoverer
    compose: Composer
    decompose: Decomposer
    storage_key: str

    def discover(self, timeout: float) -> HTTPClient:
        cfg = self.config
        try:
            created, cached = cfg.storage.read(self.storage_key)
        except (LookupError, OSError, ValueError):
            cfg.logger.debug("Cached %r not found. Triggering discovery process", self.storage_key)
            return self._discover_and_cache(timeout)

        cfg.logger.debug("Found cached copy of %r stored at %s", self.storage_key, _stamp(created))
        if expired(time.time(), created, cfg.ttl, cfg.ttl_jitter):
            cfg.logger.debug("Cached copy of %r expired. Refreshing", self.storage_key)
            return self._discover_and_cache(timeout)

        return self._wrap(self.compose(cached, self, timeout), timeout)

    def _discover_and_cache(self, timeout: float) -> CacheAwareClient:
        client = self.discoverer.discover(timeout)
        try:
            self.config.storage.write(self.storage_key, self.decompose(client))
        except Exception as err:
            self.config.logger.warning("Could not store %r in the cache: %s", self.storage_key, err)
        return self._wrap(client, timeout)

    def _wrap(self, client: HTTPClient, timeout: float) -> CacheAwareClient:
        return CacheAwareClient(client, self, timeout)


class CacheAwareClient(HTTPClient):
    """Wraps a cached client and rediscovers it when a request fails.

    A response carrying an HTTP error status counts as success: the server was found.
    """

    def __init__(self, client: HTTPClient, cacher: DiscoveryCacher, timeout: float) -> None:
        self.client = client
        self.cacher = cacher
        self.timeout = timeout

    def get(self, path: str) -> Any:
        try:
            return self.client.get(path)
        except Exception:
            pass
        cacher = self.cacher
        try:
            new_client = cacher._discover_and_cache(self.timeout)
        except Exception:
            try:
                cacher.config.storage.delete(cacher.storage_key)
            except Exception as err:
                cacher.config.logger.debug(
                    "Could not remove %r from the cache: %s", cacher.storage_key, err
                )
            raise
        self.client = new_client
        return self.client.get(path)

    def node_ip(self) -> str:
        # Not guaranteed to be valid at the moment of the call.
        return self.client.node_ip()


def wrapped_client(ca_client: HTTPClient) -> HTTPClient:
    """Return the client wrapped by a CacheAwareClient."""
    if not isinstance(ca_client, CacheAwareClient):
        raise TypeError(f"{type(ca_client).__name__} is not a cache-aware client")
    return ca_client.client


@dataclass
class MultiDiscoveryCacher(MultiDiscoverer):
    """Caches the result of a MultiDiscoverer. Not thread-safe."""

    config: DiscoveryCacherConfig
    discoverer: MultiDiscoverer
    compose: MultiComposer
    decompose: MultiDecomposer
    storage_key: str

    def discover(self, timeout: float) -> list[HTTPClient]:
        cfg = self.config
        try:
            created, cached = cfg.storage.read(self.storage_key)
        except (LookupError, OSError, ValueError):
            cfg.logger.debug("Cached %r not found. Triggering discovery process", self.storage_key)
        else:
            cfg.logger.debug("Found cached copy of %r stored at %s", self.storage_key, _stamp(created))
            if not expired(time.time(), created, cfg.ttl, cfg.ttl_jitter):
                try:
                    return self.compose(cached, self, timeout)
                except Exception as err:
                    raise RuntimeError(f"could not compose cache: {err}") from err
            cfg.logger.debug("Cached copy of %r expired. Refreshing", self.storage_key)
        return self._discover_and_cache(timeout)

    def _discover_and_cache(self, timeout: float) -> list[HTTPClient]:
        clients = self.discoverer.discover(timeout)
        try:
            self.config.storage.write(self.storage_key, self.decompose(clients))
        except Exception as err:
            self.config.logger.warning("Could not store %r in the cache: %s", self.storage_key, err)
        return clients