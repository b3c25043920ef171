"""Audit trail for tool calls.

Each accepted tools/call produces two JSON Lines entries: a ``request``
entry when the call starts and a ``response`` entry when it ends (success,
tool_error, error, or abandoned at shutdown). Values stored under keys that
look like credentials are replaced before anything reaches the file.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# Argument keys whose values never reach the log (MISP calls its key "authkey")
SENSITIVE_KEY_PATTERN = re.compile(r"pass(word)?|secret|api[_-]?key|authkey|auth|token|credential", re.I)

REDACTED = "[REDACTED]"


def sanitize_arguments(arguments: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of the arguments with sensitive values redacted.

    Nested objects and lists are walked, so a credential inside a filter
    object is redacted as well.
    """
    return {
        key: REDACTED if SENSITIVE_KEY_PATTERN.search(key) else _sanitize_value(value)
        for key, value in arguments.items()
    }


def _sanitize_value(value: Any) -> Any:
    if isinstance(value, dict):
        return sanitize_arguments(value)
    if isinstance(value, list):
        return [_sanitize_value(item) for item in value]
    return value


def _utc_now() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class AuditLogger:
    """Writes the tool call audit trail.

    The file is opened in append mode and flushed after every entry, so
    entries from earlier runs are kept and a crash loses nothing written.
    """

    def __init__(self, log_path: Path) -> None:
        """Open the audit log, creating missing parent directories.

        Args:
            log_path: Location of the JSON Lines file.
        """
        log_path.parent.mkdir(parents=True, exist_ok=True)
        self._log_path = log_path
        self._file = log_path.open("a", encoding="utf-8")

    @property
    def path(self) -> Path:
        """Location of the log file."""
        return self._log_path

    def _append(self, entry_type: str, request_id: int | str | None, tool_name: str, **fields: Any) -> None:
        entry = {
            "type": entry_type,
            "timestamp": _utc_now(),
            "request_id": request_id,
            "tool_name": tool_name,
            **fields,
        }
        try:
            self._file.write(json.dumps(entry, default=str) + "\n")
            self._file.flush()
        except (OSError, ValueError):
            # Audit failures are logged, never raised to the tool call
            logger.exception("Could not write %s entry to %s", entry_type, self._log_path)

    def log_request(
        self, request_id: int | str | None, tool_name: str, arguments: dict[str, Any]
    ) -> None:
        """Record that a tool call started.

        Args:
            request_id: JSON-RPC id of the call.
            tool_name: Tool being run.
            arguments: Validated tool arguments, redacted before writing.
        """
        self._append("request", request_id, tool_name, arguments=sanitize_arguments(arguments))

    def log_response(
        self,
        request_id: int | str | None,
        tool_name: str,
        status: str,
        duration_ms: float,
        error_code: int | None = None,
    ) -> None:
        """Record how a tool call ended.

        Args:
            request_id: JSON-RPC id of the call.
            tool_name: Tool that ran.
            status: ``success``, ``tool_error``, ``error`` or ``abandoned``.
            duration_ms: Wall time of the call.
            error_code: JSON-RPC error code sent back, for ``error`` only.
        """
        fields: dict[str, Any] = {
            "result_status": status,
            "execution_time_ms": round(duration_ms, 3),
        }
        if error_code is not None:
            fields["error_code"] = error_code
        self._append("response", request_id, tool_name, **fields)

    def close(self) -> None:
        """Close the log file. Safe to call more than once."""
        if not self._file.closed:
            self._file.close()

    def __enter__(self) -> AuditLogger:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
