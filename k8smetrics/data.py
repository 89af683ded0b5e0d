"""Grouping of raw data and the errors collected while grouping or populating."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Iterable

from k8smetrics.definition import RawGroups, SpecGroups

FetchFunc = Callable[[], RawGroups]
"""Fetches raw grouped data from a source; raises on failure."""


class ErrorGroup(Exception):
    """A set of errors that may be recoverable (execution can continue) or not."""

    def __init__(self, errors: Iterable[BaseException] | None = None, recoverable: bool = False) -> None:
        super().__init__()
        self.errors: list[BaseException] = list(errors or [])
        self.recoverable = recoverable

    def append(self, *args: BaseException) -> None:
        """Add the given errors to the group."""
        self.errors.extend(args)

    def __str__(self) -> str:
        kind = "Recoverable" if self.recoverable else "Non-recoverable"
        return f"{kind} error group: {', '.join(str(err) for err in self.errors)}"

    def __repr__(self) -> str:
        return f"ErrorGroup(errors={self.errors!r}, recoverable={self.recoverable!r})"


@dataclass
class PopulateResult:
    """Outcome of populating an integration: whether anything was set and what failed."""

    errors: list[BaseException] = field(default_factory=list)
    populated: bool = False

    def __str__(self) -> str:
        message = "populate errors:"
        for err in self.errors:
            message = f"{message}, {err}"
        return message


class Grouper(ABC):
    """Groups raw data by some label such as pod or container."""

    @abstractmethod
    def group(self, spec_groups: SpecGroups) -> tuple[RawGroups | None, ErrorGroup | None]:
        """Return the grouped raw data together with any errors met on the way."""