"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger

from credit_ledger.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_settlement(
    request_id: Optional[str],
    customer_id: str,
    order_id: str,
    path: str,
    total_cents: int,
    discount_cents: int,
    duration_ms: float,
) -> None:
    """Log structured settlement outcome for reconciliation"""
    logging.info(
        "Settlement completed",
        extra={
            "request_id": request_id,
            "customer_id": customer_id,
            "order_id": order_id,
            "step": "settlement_complete",
            "settlement_path": path,
            "total_cents": total_cents,
            "discount_cents": discount_cents,
            "duration_ms": duration_ms,
        },
    )


def log_credit_review(application_id: str, customer_id: str, decision: str, credit_limit_cents: int) -> None:
    """Log credit application review outcome"""
    logging.info(
        "Credit application reviewed",
        extra={
            "application_id": application_id,
            "customer_id": customer_id,
            "step": "credit_review",
            "decision": decision,
            "credit_limit_cents": credit_limit_cents,
        },
    )
