"""HTTP sessions with a default timeout."""

from __future__ import annotations

from typing import Any

import requests


class TimeoutSession(requests.Session):
    """A requests session that applies a default timeout to every request.

    A timeout of zero or ``None`` means no timeout.
    """

    def __init__(self, timeout: float | None = None) -> None:
        super().__init__()
        self.timeout = timeout or None

    def request(self, method: str, url: str, *args: Any, **kwargs: Any) -> requests.Response:
        kwargs.setdefault("timeout", self.timeout)
        return super().request(method, url, *args, **kwargs)


def basic_http_client(timeout: float | None) -> TimeoutSession:
    """Return a session configured with ``timeout``."""
    return TimeoutSession(timeout)


def insecure_http_client(timeout: float | None) -> TimeoutSession:
    """Return a session configured with ``timeout`` that skips TLS verification."""
    session = basic_http_client(timeout)
    session.verify = False
    return session