"""Prometheus-compatible metrics for application monitoring."""

import threading
import time
import logging
from typing import Dict, List

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)


class MetricsCollector:
    """Collects HTTP request metrics and allocation counters in Prometheus exposition format."""

    def __init__(self):
        self.request_count: Dict[str, int] = {}
        self.request_duration: Dict[str, List[float]] = {}
        self.error_count: Dict[int, int] = {}
        self.active_requests: int = 0
        self.ws_active_connections: int = 0
        # Allocation engine counters, keyed by label value
        self.booking_transitions: Dict[str, int] = {}
        self.waitlist_promotions: Dict[str, int] = {}
        self.table_releases: int = 0
        self.sweeps_without_match: int = 0
        self.sweep_failures: int = 0
        self._lock = threading.Lock()

    def record_request(self, method: str, path: str, status: int, duration: float):
        # Normalize path to avoid cardinality explosion
        normalized = self._normalize_path(path)
        key = f"{method} {normalized}"
        with self._lock:
            self.request_count[key] = self.request_count.get(key, 0) + 1
            durations = self.request_duration.setdefault(key, [])
            durations.append(duration)
            if len(durations) > 1000:
                self.request_duration[key] = durations[-1000:]
            if status >= 400:
                self.error_count[status] = self.error_count.get(status, 0) + 1

    def record_transition(self, to_status: str) -> None:
        with self._lock:
            self.booking_transitions[to_status] = self.booking_transitions.get(to_status, 0) + 1

    def record_promotion(self, mode: str) -> None:
        """Count a waitlist promotion; mode is "sweep" or "explicit"."""
        with self._lock:
            self.waitlist_promotions[mode] = self.waitlist_promotions.get(mode, 0) + 1

    def record_release(self) -> None:
        with self._lock:
            self.table_releases += 1

    def record_sweep_miss(self) -> None:
        with self._lock:
            self.sweeps_without_match += 1

    def record_sweep_failure(self) -> None:
        with self._lock:
            self.sweep_failures += 1

    @staticmethod
    def _normalize_path(path: str) -> str:
        """Replace numeric IDs with :id to limit cardinality."""
        parts = path.split("/")
        return "/".join(":id" if p.isdigit() else p for p in parts)

    def get_prometheus_metrics(self) -> str:
        lines: List[str] = []
        lines.append("# HELP http_requests_total Total HTTP requests")
        lines.append("# TYPE http_requests_total counter")
        for key, count in sorted(self.request_count.items()):
            method, path = key.split(" ", 1)
            lines.append(f'http_requests_total{{method="{method}",path="{path}"}} {count}')

        lines.append("# HELP http_errors_total Total HTTP errors by status code")
        lines.append("# TYPE http_errors_total counter")
        for code, count in sorted(self.error_count.items()):
            lines.append(f'http_errors_total{{status="{code}"}} {count}')

        lines.append("# HELP http_active_requests Current active requests")
        lines.append("# TYPE http_active_requests gauge")
        lines.append(f"http_active_requests {self.active_requests}")

        lines.append("# HELP http_request_duration_seconds Request duration summary")
        lines.append("# TYPE http_request_duration_seconds summary")
        for key, durations in sorted(self.request_duration.items()):
            if durations:
                method, path = key.split(" ", 1)
                avg = sum(durations) / len(durations)
                p99 = sorted(durations)[int(len(durations) * 0.99)] if len(durations) > 1 else durations[0]
                lines.append(f'http_request_duration_seconds{{method="{method}",path="{path}",quantile="0.99"}} {p99:.4f}')
                lines.append(f'http_request_duration_seconds{{method="{method}",path="{path}",quantile="0.5"}} {avg:.4f}')

        lines.append("# HELP booking_transitions_total Booking status transitions by target status")
        lines.append("# TYPE booking_transitions_total counter")
        for to_status, count in sorted(self.booking_transitions.items()):
            lines.append(f'booking_transitions_total{{status="{to_status}"}} {count}')

        lines.append("# HELP waitlist_promotions_total Waiting-list promotions by mode")
        lines.append("# TYPE waitlist_promotions_total counter")
        for mode, count in sorted(self.waitlist_promotions.items()):
            lines.append(f'waitlist_promotions_total{{mode="{mode}"}} {count}')

        lines.append("# HELP table_releases_total Tables released back to available")
        lines.append("# TYPE table_releases_total counter")
        lines.append(f"table_releases_total {self.table_releases}")

        lines.append("# HELP waitlist_sweeps_without_match_total Sweeps that found a waiting party but no table")
        lines.append("# TYPE waitlist_sweeps_without_match_total counter")
        lines.append(f"waitlist_sweeps_without_match_total {self.sweeps_without_match}")

        lines.append("# HELP waitlist_sweep_failures_total Sweeps that failed and were absorbed")
        lines.append("# TYPE waitlist_sweep_failures_total counter")
        lines.append(f"waitlist_sweep_failures_total {self.sweep_failures}")

        lines.append("# HELP ws_active_connections Active WebSocket connections")
        lines.append("# TYPE ws_active_connections gauge")
        lines.append(f"ws_active_connections {self.ws_active_connections}")

        return "\n".join(lines) + "\n"


metrics = MetricsCollector()


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware that records request metrics."""

    async def dispatch(self, request: Request, call_next):
        if request.url.path == "/metrics":
            return await call_next(request)

        metrics.active_requests += 1
        start = time.time()
        try:
            response = await call_next(request)
            duration = time.time() - start
            metrics.record_request(
                request.method,
                request.url.path,
                response.status_code,
                duration,
            )
            return response
        except Exception:
            duration = time.time() - start
            metrics.record_request(request.method, request.url.path, 500, duration)
            raise
        finally:
            metrics.active_requests -= 1
