"""
Structured JSON logging for Drive export operations.
Provides consistent logging format with required fields:
- service, action, status, organization_id, entity_type, entity_id, drive_file_id
- error_type, error_message (in case of failure)
- Masks sensitive data (partial email addresses)
"""

import logging
import json
from datetime import datetime
from typing import Optional
import re


def mask_email(email: Optional[str]) -> Optional[str]:
    """
    Partially mask an email address for privacy.
    Example: john.doe@example.com -> j***@example.com
    """
    if not email or '@' not in email:
        return email

    local, domain = email.split('@', 1)
    return f"{local[:1]}***@{domain}"


def mask_emails_in_text(text: str) -> str:
    """
    Find and mask all email addresses in a text string.
    """
    email_pattern = r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b'
    return re.sub(email_pattern, lambda match: mask_email(match.group(0)), text)


class StructuredLogger:
    """
    Structured logger for export operations.
    Outputs JSON-formatted logs with consistent fields.
    """

    def __init__(self, service: str = "drive_export", logger_name: str = "toolboard_drive.export"):
        self.service = service
        self.logger = logging.getLogger(logger_name)

    def _log(
        self,
        level: int,
        action: str,
        status: str,
        message: str,
        organization_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        drive_file_id: Optional[str] = None,
        error_type: Optional[str] = None,
        error_message: Optional[str] = None,
        **extra_fields
    ):
        log_data = {
            "timestamp": datetime.now().astimezone().isoformat(),
            "service": self.service,
            "action": action,
            "status": status,
            "message": mask_emails_in_text(message),
        }

        if organization_id:
            log_data["organization_id"] = organization_id
        if entity_type:
            log_data["entity_type"] = entity_type
        if entity_id:
            log_data["entity_id"] = entity_id
        if drive_file_id:
            log_data["drive_file_id"] = drive_file_id
        if error_type:
            log_data["error_type"] = error_type
        if error_message:
            log_data["error_message"] = mask_emails_in_text(error_message)

        for key, value in extra_fields.items():
            log_data[key] = mask_emails_in_text(value) if isinstance(value, str) else value

        self.logger.log(level, json.dumps(log_data, default=str))

    def info(
        self,
        action: str,
        status: str = "success",
        message: str = "",
        **fields
    ):
        """
        Log informational message.

        Args:
            action: The operation being performed (e.g., "export", "resync", "verify")
            status: Status of the operation (default: "success")
            message: Human-readable message
            **fields: organization_id, entity_type, entity_id, drive_file_id or any extra field
        """
        self._log(logging.INFO, action=action, status=status, message=message, **fields)

    def warning(
        self,
        action: str,
        status: str = "warning",
        message: str = "",
        **fields
    ):
        """Log warning message."""
        self._log(logging.WARNING, action=action, status=status, message=message, **fields)

    def error(
        self,
        action: str,
        message: str,
        error: Optional[Exception] = None,
        **fields
    ):
        """
        Log error message.

        Args:
            action: The operation that failed
            message: Human-readable error message
            error: Exception object (if available)
            **fields: Additional fields
        """
        error_type = None
        error_message = None

        if error:
            error_type = type(error).__name__
            error_message = str(error)

        self._log(
            logging.ERROR,
            action=action,
            status="error",
            message=message,
            error_type=error_type,
            error_message=error_message,
            **fields
        )


export_logger = StructuredLogger(service="drive_export")
