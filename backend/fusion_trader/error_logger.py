from typing import Any, Deque, Dict, List, Optional
from collections import Counter, deque
from datetime import datetime
from enum import Enum
import itertools
import logging
import threading
from pydantic import BaseModel, Field

class ErrorType(str, Enum):
    SOURCE_UNAVAILABLE = "source_unavailable"
    COMPUTATION_FAULT = "computation_fault"
    NETWORK_ERROR = "network_error"
    SYSTEM_ERROR = "system_error"

SEVERITY_LEVELS = {
    "low": logging.INFO,
    "medium": logging.WARNING,
    "high": logging.ERROR,
    "critical": logging.CRITICAL,
}

class ErrorLog(BaseModel):
    id: str
    error_type: ErrorType
    message: str
    details: Dict[str, Any] = {}
    severity: str = "medium"
    resolved: bool = False
    timestamp: datetime = Field(default_factory=datetime.now)

class ErrorLogger:
    """
    Faults the engine recovered from (failed sources, degraded predictions,
    overrunning ticks). Every entry is also written to the regular log at a
    level derived from its severity; the last ``max_history`` entries are
    kept for the status API.
    """

    def __init__(self, max_history: int = 100):
        self.logger = logging.getLogger(__name__)
        self.max_history = max_history
        self.error_history: Deque[ErrorLog] = deque(maxlen=max_history)
        self._sequence = itertools.count(1)
        self._lock = threading.Lock()

    def log_error(
        self,
        error_type: ErrorType,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        severity: str = "medium"
    ) -> ErrorLog:
        with self._lock:
            entry = ErrorLog(
                id=f"{error_type.value}-{next(self._sequence):06d}",
                error_type=error_type,
                message=message,
                details=details or {},
                severity=severity
            )
            self.error_history.append(entry)

        self.logger.log(
            SEVERITY_LEVELS.get(severity, logging.WARNING),
            f"[{error_type.value}] {message}",
            extra={"error_details": entry.details}
        )
        return entry

    def get_recent_errors(self, limit: int = 20, error_type: Optional[ErrorType] = None) -> List[ErrorLog]:
        """Newest first, optionally only one type"""
        with self._lock:
            entries = [
                entry for entry in reversed(self.error_history)
                if error_type is None or entry.error_type == error_type
            ]
        return entries[:limit]

    def get_unresolved_errors(self) -> List[ErrorLog]:
        with self._lock:
            return [entry for entry in self.error_history if not entry.resolved]

    def resolve_error(self, error_id: str) -> bool:
        with self._lock:
            entry = next((e for e in self.error_history if e.id == error_id), None)
            if entry is None:
                return False
            entry.resolved = True
            return True

    def clear(self):
        with self._lock:
            self.error_history.clear()

    def get_error_stats(self) -> Dict[str, Any]:
        with self._lock:
            entries = list(self.error_history)

        return {
            "total_errors": len(entries),
            "unresolved_errors": sum(not entry.resolved for entry in entries),
            "error_types": dict(Counter(entry.error_type.value for entry in entries)),
            "last_error": entries[-1].timestamp if entries else None
        }

error_logger = ErrorLogger()
