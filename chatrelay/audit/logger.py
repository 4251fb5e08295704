"""Append-only JSON Lines audit trail for relay security events.

Each line carries ``prev_hash``, the SHA-256 of the previous line, so that
truncation or edits inside the file are detectable with
:func:`validate_audit_chain`.
"""

from __future__ import annotations

import fcntl
import hashlib
import json
import os
from dataclasses import dataclass
from pathlib import Path

from chatrelay.models import AuditEvent, AuditEventType, RiskLevel


@dataclass
class ChainValidationResult:
    valid: bool
    broken_at_line: int | None = None


def validate_audit_chain(log_path: Path) -> ChainValidationResult:
    """Check that every line's ``prev_hash`` matches the line before it."""
    text = log_path.read_text().strip()
    if not text:
        return ChainValidationResult(valid=True)

    lines = text.split("\n")
    previous: str | None = None
    for lineno, line in enumerate(lines, start=1):
        entry = json.loads(line)
        expected = hashlib.sha256(previous.encode()).hexdigest() if previous else None
        if entry.get("prev_hash") != expected:
            return ChainValidationResult(valid=False, broken_at_line=lineno)
        previous = line

    return ChainValidationResult(valid=True)


class AuditLogger:
    """Hash-chained audit log with size-based rotation."""

    def __init__(
        self,
        log_path: str,
        max_bytes: int = 10_485_760,
        backup_count: int = 5,
    ) -> None:
        self.log_path = Path(log_path)
        self._max_bytes = max_bytes
        self._backup_count = backup_count
        self._last_line: str | None = None
        # Continue the chain of an existing file
        if self.log_path.exists() and self.log_path.stat().st_size > 0:
            text = self.log_path.read_text().strip()
            if text:
                self._last_line = text.split("\n")[-1]

    @classmethod
    def from_env(cls, log_path: str) -> AuditLogger:
        max_bytes = int(os.environ.get("AUDIT_LOG_MAX_BYTES", "10485760"))
        backup_count = int(os.environ.get("AUDIT_LOG_BACKUP_COUNT", "5"))
        return cls(log_path=log_path, max_bytes=max_bytes, backup_count=backup_count)

    def _maybe_rotate(self) -> None:
        if not self.log_path.exists() or self.log_path.stat().st_size < self._max_bytes:
            return

        def backup(index: int) -> Path:
            return self.log_path.parent / f"{self.log_path.name}.{index}"

        oldest = backup(self._backup_count)
        if oldest.exists():
            oldest.unlink()
        for i in range(self._backup_count - 1, 0, -1):
            if backup(i).exists():
                backup(i).rename(backup(i + 1))
        self.log_path.rename(backup(1))
        # A rotated file starts a fresh chain
        self._last_line = None

    def log(self, event: AuditEvent) -> None:
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

        lock_file = self.log_path.parent / f".{self.log_path.name}.lock"
        with open(lock_file, "w") as lf:
            fcntl.flock(lf, fcntl.LOCK_EX)
            try:
                self._maybe_rotate()
                prev_hash: str | None = None
                if self._last_line is not None:
                    prev_hash = hashlib.sha256(self._last_line.encode()).hexdigest()
                data = json.loads(event.model_dump_json())
                data["prev_hash"] = prev_hash
                line = json.dumps(data, separators=(",", ":"))
                with open(self.log_path, "a") as f:
                    f.write(line + "\n")
            finally:
                fcntl.flock(lf, fcntl.LOCK_UN)

        self._last_line = line

    def record(
        self,
        event_type: AuditEventType,
        action: str,
        result: str,
        risk_level: RiskLevel = RiskLevel.INFO,
        *,
        source_ip: str | None = None,
        chatbot_id: str | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        """Build and append an :class:`AuditEvent` in one call."""
        self.log(AuditEvent(
            event_type=event_type,
            action=action,
            result=result,
            risk_level=risk_level,
            source_ip=source_ip,
            chatbot_id=chatbot_id,
            details=details,
        ))
