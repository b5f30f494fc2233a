"""Per-lease publication statistics kept while a lease is active."""

from __future__ import annotations

import subprocess
import threading
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Mapping

UPLOAD_PLOTS_SCRIPT = "/usr/share/cvmfs-server/upload_stats_plots.sh"
START_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


class StatisticsError(Exception):
    """A statistics entry is missing, duplicated or could not be processed."""


def _count(data: Mapping[str, Any], key: str) -> int:
    value = data.get(key, 0)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{key} must be an integer, got {type(value).__name__}")
    return value


@dataclass
class PublishCounters:
    """Counters describing what a publication added to the repository."""

    chunks_added: int = 0
    chunks_duplicated: int = 0
    catalogs_added: int = 0
    uploaded_bytes: int = 0
    uploaded_catalog_bytes: int = 0

    _KEYS = {
        "chunks_added": "n_chunks_added",
        "chunks_duplicated": "n_chunks_duplicated",
        "catalogs_added": "n_catalogs_added",
        "uploaded_bytes": "sz_uploaded_bytes",
        "uploaded_catalog_bytes": "sz_uploaded_catalog_bytes",
    }

    def __add__(self, other: "PublishCounters") -> "PublishCounters":
        if not isinstance(other, PublishCounters):
            return NotImplemented
        return PublishCounters(
            **{f.name: getattr(self, f.name) + getattr(other, f.name) for f in fields(self)}
        )

    def to_dict(self) -> dict[str, int]:
        """Return the counters in their wire form."""
        return {key: getattr(self, attr) for attr, key in self._KEYS.items()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PublishCounters":
        """Build counters from their wire form; missing counters are zero."""
        return cls(**{attr: _count(data, key) for attr, key in cls._KEYS.items()})


@dataclass
class Statistics:
    """Statistics of one lease: publication counters and the start time."""

    publish: PublishCounters = field(default_factory=PublishCounters)
    start_time: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Return the statistics in their wire form."""
        return {"publish": self.publish.to_dict(), "start_time": self.start_time}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Statistics":
        """Build statistics from their wire form."""
        publish = data.get("publish") or {}
        if not isinstance(publish, Mapping):
            raise TypeError("publish must be an object")
        start_time = data.get("start_time") or ""
        if not isinstance(start_time, str):
            raise TypeError("start_time must be a string")
        return cls(PublishCounters.from_dict(publish), start_time)


class StatisticsManager:
    """Thread-safe store of statistics for each active lease path."""

    def __init__(self, plots_script: str = UPLOAD_PLOTS_SCRIPT) -> None:
        self.plots_script = plots_script
        self._leases: dict[str, Statistics] = {}
        self._lock = threading.Lock()

    def create_lease(self, lease_path: str) -> None:
        """Start an empty statistics entry for a lease, stamped with the current time."""
        with self._lock:
            if lease_path in self._leases:
                raise StatisticsError(
                    f"Could not create statistics entry for lease {lease_path}, "
                    "entry already exists"
                )
            self._leases[lease_path] = Statistics(
                start_time=datetime.now().strftime(START_TIME_FORMAT)
            )

    def pop_lease(self, lease_path: str) -> Statistics:
        """Remove and return the statistics entry of a lease."""
        with self._lock:
            try:
                return self._leases.pop(lease_path)
            except KeyError:
                raise StatisticsError(
                    f"No statistics counters for lease {lease_path}"
                ) from None

    def merge_into_lease_statistics(self, lease_path: str, other: Statistics) -> None:
        """Add the publication counters of ``other`` to those of the lease."""
        with self._lock:
            current = self._leases.get(lease_path)
            if current is None:
                raise StatisticsError(
                    f"Statistics counters not found for lease {lease_path}"
                )
            self._leases[lease_path] = Statistics(
                current.publish + other.publish, current.start_time
            )

    def upload_stats_plots(self, repo_name: str) -> None:
        """Run the plot upload script for a repository."""
        try:
            subprocess.run(
                [self.plots_script, repo_name],
                check=True,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except (OSError, subprocess.CalledProcessError) as exc:
            raise StatisticsError(f"statistics plots upload failed.: {exc}") from exc