"""Build metrics event log.

Every build step appends one JSON object per line to
`{metrics_dir}/build-metrics.jsonl`. The file is append-only; reports are
computed by reading it back.

Event kinds:
    start   - a package build started
    stop    - a package build finished (status, cache_hit, duration)
    <other> - free-form pipeline events (e.g. 'cell', 'package')
"""

import json
import os
import socket
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional


def format_duration(seconds: float) -> str:
    """Format a duration as 'Ns', 'Mm Ss' or 'Hh Mm Ss'."""
    total = int(round(seconds))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


class BuildMetrics:
    """Append-only timestamped event log for build timings.

    Thread-safe: matrix cells running concurrently share one instance.
    """

    LOG_NAME = "build-metrics.jsonl"

    def __init__(self, metrics_dir: Path):
        """Initialize metrics log.

        Args:
            metrics_dir: Directory holding the event log
        """
        self.metrics_dir = Path(metrics_dir)
        self.log_file = self.metrics_dir / self.LOG_NAME
        self.lock = threading.Lock()
        self._started: Dict[str, Dict[str, Any]] = {}

    def _append(self, record: Dict[str, Any]) -> None:
        self.metrics_dir.mkdir(parents=True, exist_ok=True)
        line = json.dumps(record, sort_keys=True)
        with self.lock:
            with open(self.log_file, "a", encoding="utf-8") as f:
                f.write(line + "\n")

    @staticmethod
    def _timestamp() -> str:
        return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())

    def event(self, kind: str, **fields: Any) -> None:
        """Append a free-form event."""
        record = {"event": kind, "timestamp": self._timestamp()}
        record.update(fields)
        self._append(record)

    def start(self, mode: str, package: str, arch: str) -> str:
        """Record the start of a package build.

        Returns:
            Build id to pass to stop()
        """
        build_id = f"{mode}-{package}-{arch}-{int(time.time() * 1000)}"
        with self.lock:
            self._started[build_id] = {
                "mode": mode,
                "package": package,
                "arch": arch,
                "start": time.time(),
                "start_time": self._timestamp(),
            }
        self.event("start", build_id=build_id, mode=mode, package=package, arch=arch)
        return build_id

    def stop(self, build_id: str, status: str, cache_hit: bool = False) -> Dict[str, Any]:
        """Record the end of a package build.

        Args:
            build_id: Id returned by start()
            status: 'success' or 'failure'
            cache_hit: Whether the artifact came from the cache

        Returns:
            The recorded stop event
        """
        with self.lock:
            started = self._started.pop(build_id, None)

        duration = time.time() - started["start"] if started else 0.0
        record = {
            "build_id": build_id,
            "status": status,
            "cache_hit": cache_hit,
            "duration_seconds": round(duration, 3),
            "duration_formatted": format_duration(duration),
            "start_time": started["start_time"] if started else None,
            "end_time": self._timestamp(),
            "hostname": socket.gethostname(),
            "cpu_cores": os.cpu_count() or 1,
        }
        if started:
            record.update({k: started[k] for k in ("mode", "package", "arch")})
        self.event("stop", **record)
        record["event"] = "stop"
        return record

    def read_events(self) -> List[Dict[str, Any]]:
        """Read every event in the log, skipping corrupt lines."""
        if not self.log_file.exists():
            return []
        events = []
        with open(self.log_file, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(json.loads(line))
                except json.JSONDecodeError:
                    continue
        return events

    def report(self, mode: Optional[str] = None) -> Dict[str, Any]:
        """Summarize finished builds.

        Args:
            mode: Only include builds of this mode

        Returns:
            Totals, success/failure counts, cache hits and durations
        """
        stops = [e for e in self.read_events() if e.get("event") == "stop"]
        if mode is not None:
            stops = [e for e in stops if e.get("mode") == mode]

        total = len(stops)
        successes = sum(1 for e in stops if e.get("status") == "success")
        cache_hits = sum(1 for e in stops if e.get("cache_hit"))
        duration = sum(float(e.get("duration_seconds", 0)) for e in stops)

        return {
            "total_builds": total,
            "successful": successes,
            "failed": total - successes,
            "cache_hits": cache_hits,
            "cache_hit_rate": round(cache_hits / total * 100, 1) if total else 0.0,
            "total_duration_seconds": round(duration, 3),
            "total_duration_formatted": format_duration(duration),
        }
