# logging_config.py

import logging
import structlog
import sys
from typing import Any, Dict
from flask import has_request_context, request, g


def add_request_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add Flask request context to log entries"""
    if has_request_context():
        event_dict["request_id"] = getattr(g, 'request_id', None)
        event_dict["remote_addr"] = request.remote_addr
        event_dict["method"] = request.method
        event_dict["path"] = request.path
        event_dict["user_agent"] = request.headers.get('User-Agent', '')[:100]
    return event_dict


def setup_logging(app_name: str = "revenue-intelligence-engine", log_level: str = "INFO") -> None:
    """
    Configure structured JSON logging

    Args:
        app_name: Application name for log identification
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    level = getattr(logging, log_level.upper())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            add_request_context,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    logging.getLogger(app_name).setLevel(level)

    # Third-party noise
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.WARNING)
    logging.getLogger("werkzeug").setLevel(logging.WARNING)


def get_logger(name: str = None) -> structlog.BoundLogger:
    """Structured logger for name (usually __name__)"""
    return structlog.get_logger(name or __name__)


class SecurityLogger:
    """Dedicated security event logger"""

    def __init__(self):
        self.logger = get_logger("security")

    def log_webhook_rejection(self, provider: str, reason: str, ip_address: str = None, detail: str = None):
        """Log a webhook refused before processing"""
        self.logger.warning(
            "Webhook rejected",
            provider=provider,
            reason=reason,
            detail=detail,
            ip_address=ip_address,
            event_type="webhook_rejection"
        )

    def log_repeated_rejections(self, provider: str, count: int, window_minutes: int, threshold: int):
        """Alert-level event when rejections cross the threshold"""
        self.logger.error(
            "Repeated webhook signature failures",
            provider=provider,
            count=count,
            window_minutes=window_minutes,
            threshold=threshold,
            event_type="webhook_rejection_alert"
        )

    def log_admin_override(self, entity: str, entity_id: int, admin_id: str, reason: str):
        """Log manual overrides of computed or recorded outcomes"""
        self.logger.info(
            "Admin override",
            entity=entity,
            entity_id=entity_id,
            admin_id=admin_id,
            reason=reason,
            event_type="admin_override"
        )


class PerformanceLogger:
    """Performance and monitoring logger"""

    def __init__(self):
        self.logger = get_logger("performance")

    def log_api_call(self, service: str, endpoint: str, duration_ms: float, status_code: int):
        """Log external API call performance"""
        self.logger.info(
            "External API call",
            service=service,
            endpoint=endpoint,
            duration_ms=duration_ms,
            status_code=status_code,
            event_type="api_call"
        )

    def log_webhook_processing(self, provider: str, event_type: str, duration_ms: float, outcome: str):
        """Log time spent ingesting one webhook delivery"""
        self.logger.info(
            "Webhook processed",
            provider=provider,
            webhook_event_type=event_type,
            duration_ms=duration_ms,
            outcome=outcome,
            event_type="webhook_processing"
        )


# Global logger instances
security_logger = SecurityLogger()
performance_logger = PerformanceLogger()
