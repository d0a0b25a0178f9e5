import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from app.compliance.credentials import redact
from app.config import settings

logger = logging.getLogger("app.evidence")

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class AuditService:
    @staticmethod
    def evidence_path() -> Path:
        return Path(settings.EVIDENCE_LOG_PATH)

    @staticmethod
    def log_evidence(
        level: str,
        message: str,
        data: dict[str, Any] | None = None,
        *,
        secrets: tuple[str, ...] = (),
    ) -> dict[str, Any]:
        """
        Append one check/fix outcome to the evidence log.
        The log is write-only; nothing in the service reads it back.
        """
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level.upper(),
            "message": redact(message, *secrets),
            "data": json.loads(redact(json.dumps(data or {}, default=str), *secrets)),
        }
        line = json.dumps(entry, ensure_ascii=True)
        logger.log(_LEVELS.get(entry["level"], logging.INFO), line)
        try:
            with AuditService.evidence_path().open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        except OSError as exc:
            logger.warning("Failed to write to evidence log %s: %s", AuditService.evidence_path(), exc)
        return entry

    @staticmethod
    def verify_sink() -> bool:
        directory = AuditService.evidence_path().resolve().parent
        if os.access(directory, os.W_OK):
            logger.info("Evidence log will be written to: %s", AuditService.evidence_path())
            return True
        logger.warning("Evidence log directory is not writable: %s. Logs will only go to the console.", directory)
        return False
