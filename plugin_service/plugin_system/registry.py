import logging
import threading
from typing import Dict, FrozenSet, Iterator, List

from ..errors import DuplicateNameError, PluginNotFoundError
from ..models import PluginRecord

logger = logging.getLogger(__name__)


class PluginRegistry:
    """Authoritative in-memory record of installed plugins.

    Responsibilities:
    - map plugin name -> PluginRecord
    - atomic single-name mutations (no cross-name transactions)
    - snapshot reads that never expose a live view

    Registry instances are constructed explicitly and passed to the
    lifecycle manager; there is no process-wide instance.
    """

    def __init__(self) -> None:
        self._records: Dict[str, PluginRecord] = {}
        self._lock = threading.Lock()
        logger.info("PluginRegistry initialized")

    def put(self, name: str, record: PluginRecord, strict: bool = False) -> None:
        with self._lock:
            if strict and name in self._records:
                raise DuplicateNameError(name)
            self._records[name] = record
        logger.debug(f"Registry put: {name} ({record.state.value})")

    def get(self, name: str) -> PluginRecord:
        with self._lock:
            record = self._records.get(name)
        if record is None:
            raise PluginNotFoundError(name)
        return record

    def remove(self, name: str) -> PluginRecord:
        with self._lock:
            record = self._records.pop(name, None)
        if record is None:
            raise PluginNotFoundError(name)
        logger.debug(f"Registry remove: {name}")
        return record

    def list(self) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._records)

    def records(self) -> List[PluginRecord]:
        with self._lock:
            return list(self._records.values())

    def count_by_state(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for record in self.records():
            counts[record.state.value] = counts.get(record.state.value, 0) + 1
        return counts

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __iter__(self) -> Iterator[str]:
        return iter(self.list())


__all__ = ["PluginRegistry"]
