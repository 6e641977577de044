"""
Logging configuration for truthseal.

Provides structured JSON logging for audit trails. Modules log through
``logging.getLogger(__name__)``; sealing and verification outcomes are
additionally emitted as audit events on the ``truthseal.audit`` logger.

Never log private key material or record bodies. Ids, digests and key
versions are safe.
"""

import json
import logging
import sys
import time
from typing import Any


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    One object per line, suitable for log aggregation.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            log_data.update(extra_fields)

        return json.dumps(log_data, default=str)


class SealAuditLogger:
    """
    Audit events for the sealing lifecycle.
    """

    def __init__(self, name: str = "truthseal.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, message: str, **fields: Any) -> None:
        if not self._logger.isEnabledFor(level):
            return
        self._logger.log(
            level,
            "%s: %s",
            event_type,
            message,
            extra={"extra_fields": {"event_type": event_type, **fields}},
        )

    def record_sealed(
        self,
        record_id: str,
        version: int,
        content_hash: str,
        key_version: str,
        sealing_version: str,
        attestation_status: str,
    ) -> None:
        """Log a completed sealing transition."""
        self._log(
            logging.INFO,
            "RECORD_SEALED",
            f"Record {record_id} v{version} sealed",
            record_id=record_id,
            version=version,
            content_hash=content_hash,
            key_version=key_version,
            sealing_version=sealing_version,
            attestation_status=attestation_status,
        )

    def seal_rejected(self, draft_id: str, reason: str, error_kind: str) -> None:
        """Log a sealing attempt that stopped before persisting anything."""
        self._log(
            logging.WARNING,
            "SEAL_REJECTED",
            f"Sealing of draft {draft_id} rejected: {reason}",
            draft_id=draft_id,
            reason=reason,
            error_kind=error_kind,
        )

    def attestation_degraded(self, record_id: str, content_hash: str, attempts: int, reason: str | None) -> None:
        """Log a record sealed without a timestamp proof."""
        self._log(
            logging.WARNING,
            "ATTESTATION_DEGRADED",
            f"Record {record_id} sealed without timestamp proof",
            record_id=record_id,
            content_hash=content_hash,
            attempts=attempts,
            reason=reason,
        )

    def verification_completed(
        self,
        record_id: str | None,
        is_valid: bool,
        integrity_valid: bool,
        signature_valid: bool,
        timestamp_valid: bool | None,
    ) -> None:
        """Log a verification verdict."""
        level = logging.INFO if is_valid else logging.WARNING
        self._log(
            level,
            "VERIFICATION_COMPLETED",
            f"Verification of {record_id or 'unknown record'}: {'valid' if is_valid else 'invalid'}",
            record_id=record_id,
            is_valid=is_valid,
            integrity_valid=integrity_valid,
            signature_valid=signature_valid,
            timestamp_valid=timestamp_valid,
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: str | None = None,
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting (recommended for production)
        log_file: Optional file path for log output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


audit_log = SealAuditLogger()
