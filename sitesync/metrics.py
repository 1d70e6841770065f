from __future__ import annotations

import time
from collections.abc import Callable
from pathlib import Path
from typing import Optional

from .utils import iso_date, read_json, utc_now, write_json

MAX_BUILDS = 50
SUMMARY_WINDOW = 10


def format_duration(ms: float) -> str:
    if ms < 1000:
        return f"{ms:.0f}ms"
    if ms < 60000:
        return f"{ms / 1000:.2f}s"
    return f"{int(ms // 60000)}m {(ms % 60000) / 1000:.0f}s"


def hit_rate(stats: dict) -> Optional[float]:
    if "filesWritten" not in stats or "filesSkipped" not in stats:
        return None
    total = stats["filesWritten"] + stats["filesSkipped"]
    return round(stats["filesSkipped"] / total * 100, 1) if total else 0.0


class BuildMetrics:
    def __init__(self, phase: str, clock: Callable[[], float] = time.monotonic) -> None:
        self.phase = phase
        self.clock = clock
        self.started = clock()
        self.timestamp = iso_date(utc_now())
        self.stats: dict[str, object] = {}
        self.timings: dict[str, int] = {}
        self.total_duration: Optional[int] = None

    def record_timing(self, label: str, started: float) -> None:
        self.timings[label] = int((self.clock() - started) * 1000)

    def record_stat(self, key: str, value: object) -> None:
        self.stats[key] = value

    def finalize(self) -> dict:
        self.total_duration = int((self.clock() - self.started) * 1000)
        rate = hit_rate(self.stats)
        if rate is not None:
            self.stats["cacheHitRate"] = rate
        modified = self.stats.get("postsModified")
        total = self.stats.get("totalPosts")
        if isinstance(modified, int) and isinstance(total, int):
            self.stats["incrementalRate"] = round((1 - modified / total) * 100, 1) if total else 0.0
        return self.to_dict()

    def to_dict(self) -> dict:
        return {
            "phase": self.phase,
            "timestamp": self.timestamp,
            "totalDuration": self.total_duration,
            "stats": dict(self.stats),
            "timings": dict(self.timings),
        }


class MetricsStore:
    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> dict:
        data = read_json(self.path)
        if not isinstance(data, dict) or not isinstance(data.get("builds"), list):
            return {"builds": [], "summary": {}}
        data.setdefault("summary", {})
        return data

    def record(self, build: dict) -> dict:
        data = self.load()
        builds = (data["builds"] + [build])[-MAX_BUILDS:]
        recent = [b for b in builds[-SUMMARY_WINDOW:] if isinstance(b.get("totalDuration"), (int, float))]
        durations = [b["totalDuration"] for b in recent]
        rates = [rate for rate in (hit_rate(b.get("stats") or {}) for b in recent) if rate is not None]
        summary = {
            "lastBuild": build.get("timestamp"),
            "totalBuilds": len(builds),
            "averageDuration": round(sum(durations) / len(durations)) if durations else 0,
            "fastestBuild": min(durations) if durations else 0,
            "slowestBuild": max(durations) if durations else 0,
            "averageCacheHitRate": round(sum(rates) / len(rates), 1) if rates else 0.0,
        }
        data = {"builds": builds, "summary": summary}
        write_json(self.path, data)
        return data


def format_summary(data: dict) -> list[str]:
    summary = data.get("summary") or {}
    if not summary.get("lastBuild"):
        return ["No build metrics recorded yet."]
    lines = [
        f"Last build: {summary['lastBuild']}",
        f"Total builds tracked: {summary.get('totalBuilds', 0)}",
        f"Last {SUMMARY_WINDOW} builds:",
        f"  Average: {format_duration(summary.get('averageDuration', 0))}",
        f"  Fastest: {format_duration(summary.get('fastestBuild', 0))}",
        f"  Slowest: {format_duration(summary.get('slowestBuild', 0))}",
        f"  Cache hit rate: {summary.get('averageCacheHitRate', 0.0)}%",
        "Recent builds:",
    ]
    for number, build in enumerate(data.get("builds", [])[-5:], start=1):
        rate = (build.get("stats") or {}).get("cacheHitRate")
        rate_text = f"{rate}%" if rate is not None else "n/a"
        lines.append(
            f"  {number}. {build.get('phase')} - {format_duration(build.get('totalDuration') or 0)} ({rate_text})"
        )
    return lines
