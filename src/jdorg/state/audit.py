"""Human-readable audit trail for changes made by jdorg."""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Optional

LOGGER = logging.getLogger(__name__)


class AuditLog:
    """Append one line per audited action to a log file.

    Each line holds an ISO timestamp, the action, the entity reference and a
    compact JSON rendering of the details. Failures to write are logged and
    never interrupt the operation being audited.
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = path.expanduser() if path is not None else None
        self._lock = threading.Lock()

    @property
    def path(self) -> Path | None:
        """Return the audit file path, if file output is enabled."""
        return self._path

    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[int],
        details: Mapping[str, Any] | None = None,
    ) -> str:
        """Write an audit entry.

        Args:
            action: Verb describing what happened (``create``, ``move``, ``undo``...).
            entity_type: Kind of record affected.
            entity_id: Id of the affected record, when it has one.
            details: Extra context serialized as JSON.

        Returns:
            str: The rendered line.
        """
        stamp = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        reference = f"{entity_type}#{entity_id}" if entity_id is not None else entity_type
        payload = json.dumps(dict(details or {}), default=str, sort_keys=True)
        line = f"[{stamp}] {action} {reference} {payload}"
        LOGGER.info("audit: %s %s %s", action, reference, payload)
        if self._path is None:
            return line
        with self._lock:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with self._path.open("a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
            except OSError as exc:
                LOGGER.warning("Unable to write audit entry to %s: %s", self._path, exc)
        return line


__all__ = ["AuditLog"]
