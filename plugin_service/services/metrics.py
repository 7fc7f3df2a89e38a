"""
API metrics: монотонные счётчики запросов и ошибок по endpoint'ам.
"""
import threading
import time
from typing import Any, Dict


class ApiMetrics:
    """Потокобезопасные счётчики запросов/ошибок."""

    def __init__(self) -> None:
        self._requests: Dict[str, int] = {}
        self._errors: Dict[str, int] = {}
        self._lock = threading.Lock()
        self._started = time.monotonic()

    def record_request(self, endpoint: str) -> None:
        with self._lock:
            self._requests[endpoint] = self._requests.get(endpoint, 0) + 1

    def record_error(self, endpoint: str) -> None:
        with self._lock:
            self._errors[endpoint] = self._errors.get(endpoint, 0) + 1

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            requests = dict(self._requests)
            errors = dict(self._errors)
        return {
            'api_requests': requests,
            'api_errors': errors,
            'total_requests': sum(requests.values()),
            'total_errors': sum(errors.values()),
            'uptime_seconds': round(time.monotonic() - self._started, 3),
        }
