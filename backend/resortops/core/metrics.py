"""Prometheus-compatible metrics for application monitoring."""

import threading
import time
import logging
from typing import Dict, List, Tuple

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)


class MetricsCollector:
    """Collects HTTP and lifecycle metrics in Prometheus exposition format."""

    def __init__(self):
        self._lock = threading.Lock()
        self.request_count: Dict[str, int] = {}
        self.request_duration: Dict[str, List[float]] = {}
        self.error_count: Dict[int, int] = {}
        self.active_requests: int = 0
        # Lifecycle counters
        self.transitions: Dict[Tuple[str, str], int] = {}
        self.version_conflicts: Dict[str, int] = {}
        self.stock_movements: Dict[str, int] = {}
        self.insufficient_stock: int = 0
        self.dispatch_failures: int = 0
        self.derived_records: Dict[str, int] = {}

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

    def record_transition(self, entity_type: str, to_status: str) -> None:
        with self._lock:
            key = (entity_type, to_status)
            self.transitions[key] = self.transitions.get(key, 0) + 1

    def record_version_conflict(self, entity_type: str) -> None:
        with self._lock:
            self.version_conflicts[entity_type] = self.version_conflicts.get(entity_type, 0) + 1

    def record_stock_movement(self, kind: str) -> None:
        with self._lock:
            self.stock_movements[kind] = self.stock_movements.get(kind, 0) + 1

    def record_insufficient_stock(self) -> None:
        with self._lock:
            self.insufficient_stock += 1

    def record_dispatch_failure(self) -> None:
        with self._lock:
            self.dispatch_failures += 1

    def record_derived_record(self, effect: str) -> None:
        with self._lock:
            self.derived_records[effect] = self.derived_records.get(effect, 0) + 1

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

        lines.append("# HELP lifecycle_transitions_total Applied status transitions")
        lines.append("# TYPE lifecycle_transitions_total counter")
        for (entity_type, to_status), count in sorted(self.transitions.items()):
            lines.append(
                f'lifecycle_transitions_total{{entity_type="{entity_type}",to="{to_status}"}} {count}'
            )

        lines.append("# HELP lifecycle_version_conflicts_total Stale-version writes rejected")
        lines.append("# TYPE lifecycle_version_conflicts_total counter")
        for entity_type, count in sorted(self.version_conflicts.items()):
            lines.append(f'lifecycle_version_conflicts_total{{entity_type="{entity_type}"}} {count}')

        lines.append("# HELP stock_movements_total Ledger entries appended")
        lines.append("# TYPE stock_movements_total counter")
        for kind, count in sorted(self.stock_movements.items()):
            lines.append(f'stock_movements_total{{kind="{kind}"}} {count}')

        lines.append("# HELP stock_insufficient_total Movements rejected for insufficient stock")
        lines.append("# TYPE stock_insufficient_total counter")
        lines.append(f"stock_insufficient_total {self.insufficient_stock}")

        lines.append("# HELP derived_records_total Derived records created by the dispatcher")
        lines.append("# TYPE derived_records_total counter")
        for effect, count in sorted(self.derived_records.items()):
            lines.append(f'derived_records_total{{effect="{effect}"}} {count}')

        lines.append("# HELP dispatch_failures_total Transitions rolled back by a failed dispatch")
        lines.append("# TYPE dispatch_failures_total counter")
        lines.append(f"dispatch_failures_total {self.dispatch_failures}")

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
