"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO
from pythonjsonlogger.json import JsonFormatter

from cashflow_engine.config import settings


class CustomJsonFormatter(JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO", stream: Optional[TextIO] = None) -> None:
    """Configure structured JSON logging (stdout unless another stream is given)"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_detection(
    user_id: str,
    transaction_count: int,
    detected: int,
    skipped_duplicates: int,
    duration_ms: float,
) -> None:
    """Log structured detection outcome"""
    logging.getLogger("cashflow_engine.detection").info(
        "Detection completed",
        extra={
            "user_id": user_id,
            "step": "detection_complete",
            "transaction_count": transaction_count,
            "detected": detected,
            "skipped_duplicates": skipped_duplicates,
            "duration_ms": duration_ms,
        },
    )


def log_projection(
    user_id: str,
    horizon_days: int,
    simulation_count: int,
    negative_risk_percent: float,
    risk_level: str,
    duration_ms: float,
) -> None:
    """Log structured projection outcome for analysis"""
    logging.getLogger("cashflow_engine.projection").info(
        "Projection completed",
        extra={
            "user_id": user_id,
            "step": "projection_complete",
            "horizon_days": horizon_days,
            "simulation_count": simulation_count,
            "negative_risk_percent": negative_risk_percent,
            "risk_level": risk_level,
            "duration_ms": duration_ms,
        },
    )
