"""
Logging configuration for the access-control service.

This module provides centralized logging configuration with support for
structured logging, different log levels, and multiple output formats.
"""

import logging
import logging.config
import sys
from typing import Dict, Any, Optional


def get_logging_config(
    log_level: str = "INFO",
    log_format: str = "json",
    log_file: Optional[str] = None,
    enable_access_log: bool = True
) -> Dict[str, Any]:
    """
    Get logging configuration dictionary.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log format ('json' or 'text')
        log_file: Optional log file path
        enable_access_log: Whether to enable HTTP access logging

    Returns:
        Logging configuration dictionary
    """
    formatters = {
        "default": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S"
        },
        "detailed": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(lineno)d - %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S"
        },
        "json": {
            "()": "pythonjsonlogger.json.JsonFormatter",
            "format": "%(asctime)s %(name)s %(levelname)s %(module)s %(lineno)d %(message)s"
        }
    }

    formatter_name = "json" if log_format == "json" else "detailed"

    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "level": log_level,
            "formatter": formatter_name,
            "stream": sys.stdout
        }
    }

    if log_file:
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": log_level,
            "formatter": formatter_name,
            "filename": log_file,
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5,
            "encoding": "utf8"
        }

    handler_names = list(handlers.keys())

    loggers = {
        "": {  # Root logger
            "level": log_level,
            "handlers": handler_names,
            "propagate": False
        },
        "uvicorn": {
            "level": log_level,
            "handlers": handler_names,
            "propagate": False
        },
        "uvicorn.error": {
            "level": log_level,
            "handlers": handler_names,
            "propagate": False
        },
        "fastapi": {
            "level": log_level,
            "handlers": handler_names,
            "propagate": False
        },
        "accessctl": {
            "level": log_level,
            "handlers": handler_names,
            "propagate": False
        }
    }

    if enable_access_log:
        loggers["uvicorn.access"] = {
            "level": "INFO",
            "handlers": handler_names,
            "propagate": False
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "handlers": handlers,
        "loggers": loggers
    }


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "text",
    log_file: Optional[str] = None,
    enable_access_log: bool = True
) -> None:
    """
    Setup logging configuration.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log format ('json' or 'text')
        log_file: Optional log file path
        enable_access_log: Whether to enable HTTP access logging
    """
    config = get_logging_config(
        log_level=log_level,
        log_format=log_format,
        log_file=log_file,
        enable_access_log=enable_access_log
    )

    logging.config.dictConfig(config)


class StructuredLogger:
    """
    Structured logger for consistent log message formatting.

    This class provides methods for logging authorization decisions and
    administrative actions with consistent field names.
    """

    def __init__(self, name: str):
        """Initialize structured logger.

        Args:
            name: Logger name
        """
        self.logger = logging.getLogger(name)

    def log_decision(
        self,
        user_id: str,
        resource: str,
        action: str,
        allowed: bool,
        reason: Optional[str] = None,
        elapsed_ms: Optional[float] = None,
        **kwargs
    ):
        """Log an authorization decision.

        Args:
            user_id: Acting user
            resource: Resource being accessed
            action: Action being performed
            allowed: Decision outcome
            reason: Denial or MFA reason
            elapsed_ms: Evaluation time in milliseconds
            **kwargs: Additional fields to log
        """
        log_data = {
            "event": "access_decision",
            "user_id": user_id,
            "resource": resource,
            "action": action,
            "allowed": allowed,
        }

        if reason:
            log_data["reason"] = reason
        if elapsed_ms is not None:
            log_data["elapsed_ms"] = elapsed_ms

        log_data.update(kwargs)

        if allowed:
            self.logger.info("Access granted", extra=log_data)
        else:
            self.logger.warning("Access denied", extra=log_data)

    def log_admin_action(
        self,
        actor_id: str,
        operation: str,
        target: str,
        success: bool,
        error: Optional[str] = None,
        **kwargs
    ):
        """Log an administrative mutation.

        Args:
            actor_id: User performing the operation
            operation: Operation name (e.g. "assign_role")
            target: Affected entity id
            success: Whether the operation succeeded
            error: Error message if it failed
            **kwargs: Additional fields to log
        """
        log_data = {
            "event": "admin_action",
            "actor_id": actor_id,
            "operation": operation,
            "target": target,
            "success": success,
        }

        if error:
            log_data["error"] = error

        log_data.update(kwargs)

        if success:
            self.logger.info("Administrative action", extra=log_data)
        else:
            self.logger.warning("Administrative action failed", extra=log_data)

    def log_policy_match(
        self,
        policy_id: str,
        rule_id: str,
        rule_action: str,
        enforcement_level: str,
        **kwargs
    ):
        """Log a matching security rule.

        Args:
            policy_id: Policy containing the rule
            rule_id: Matching rule
            rule_action: Rule outcome (deny, log_only, ...)
            enforcement_level: Policy enforcement level
            **kwargs: Additional fields to log
        """
        log_data = {
            "event": "policy_match",
            "policy_id": policy_id,
            "rule_id": rule_id,
            "rule_action": rule_action,
            "enforcement_level": enforcement_level,
        }
        log_data.update(kwargs)

        if enforcement_level == "blocking":
            self.logger.warning("Security rule matched", extra=log_data)
        elif enforcement_level == "warning":
            self.logger.info("Security rule matched", extra=log_data)
        else:
            self.logger.debug("Security rule matched", extra=log_data)

    def info(self, message: str, **kwargs):
        """Log info message with structured data."""
        self.logger.info(message, extra=kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message with structured data."""
        self.logger.warning(message, extra=kwargs)

    def error(self, message: str, **kwargs):
        """Log error message with structured data."""
        self.logger.error(message, extra=kwargs)

    def debug(self, message: str, **kwargs):
        """Log debug message with structured data."""
        self.logger.debug(message, extra=kwargs)


# Global structured logger instance for the engine
engine_logger = StructuredLogger("accessctl")
