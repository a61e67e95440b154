"""
In-process delivery metrics for the notification pipeline.

A Metrics instance is created by the process entry point (API lifespan or
ARQ worker startup) and handed to the dispatcher, queue and worker task.
"""

import logging
from collections import defaultdict
from threading import Lock
from typing import Optional

logger = logging.getLogger(__name__)

# Known metric names; anything else is logged and ignored
COUNTERS = ("email.sent", "email.failed", "email.retried", "email.dead_lettered")
TIMINGS = ("email.delivery_time",)
GAUGES = ("email.queue_size",)


class Metrics:
    """Counters, timings (seconds) and gauges, safe to share across threads"""

    def __init__(self, name: str = "salesops"):
        self.name = name
        self._lock = Lock()
        self._counters: dict[str, float] = defaultdict(float)
        self._timings: dict[str, list[float]] = defaultdict(list)
        self._gauges: dict[str, float] = {}
        logger.info(f"📊 Metrics initialized: {name}")

    def increment(self, metric: str, value: float = 1) -> None:
        if metric not in COUNTERS:
            logger.warning(f"Unknown metric: {metric}")
            return
        with self._lock:
            self._counters[metric] += value
        logger.debug(f"📊 {metric} += {value}")

    def timing(self, metric: str, seconds: float) -> None:
        if metric not in TIMINGS:
            logger.warning(f"Unknown timing metric: {metric}")
            return
        with self._lock:
            self._timings[metric].append(seconds)
        logger.debug(f"⏱️ {metric}: {seconds:.3f}s")

    def set_gauge(self, metric: str, value: float) -> None:
        if metric not in GAUGES:
            logger.warning(f"Unknown gauge metric: {metric}")
            return
        with self._lock:
            self._gauges[metric] = value

    def count(self, metric: str) -> float:
        with self._lock:
            return self._counters.get(metric, 0)

    def gauge(self, metric: str) -> Optional[float]:
        with self._lock:
            return self._gauges.get(metric)

    def timings(self, metric: str) -> list[float]:
        with self._lock:
            return list(self._timings.get(metric, []))

    def snapshot(self) -> dict:
        """Plain-dict view, e.g. for logging a summary on shutdown"""
        with self._lock:
            return {
                "counters": dict(self._counters),
                "gauges": dict(self._gauges),
                "timings": {
                    name: {"count": len(values), "total": sum(values)}
                    for name, values in self._timings.items()
                },
            }
