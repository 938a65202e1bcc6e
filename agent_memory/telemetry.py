"""
Structured logging for memory operations.
"""

import uuid
from typing import Any, Dict, Optional

import structlog

structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)
logger = structlog.get_logger("agent_memory")


def get_logger(name: Optional[str] = None):
    """Structured logger bound to a component name."""
    return structlog.get_logger(name or "agent_memory")


def new_run_id() -> str:
    """Generate a new unique run ID."""
    return str(uuid.uuid4())


def log_step(
    op: str,
    ms: float,
    extra: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Log a memory operation with timing.

    Args:
        op: Operation name (e.g., "remember", "recall")
        ms: Duration in milliseconds
        extra: Optional extra fields to log
    """
    logger.info("memory_op", op=op, duration_ms=round(ms, 3), **(extra or {}))
