"""
Rendered log records.

A record is rendered once by the logger that produced it and may then travel
to another process (collector redirection), so it only carries plain,
picklable data.
"""

from dataclasses import dataclass
from datetime import datetime, timezone


@dataclass(frozen=True)
class LogRecord:
    """
    Immutable record handed to transports.

    ``text`` is the full rendered line (context, separator and message);
    ``message`` is the message part alone, without context or styling.
    """
    timestamp: datetime
    level: str
    priority: int
    logger: str
    side: str
    worker_id: int | None
    message: str
    text: str
    pretty: bool = False

    @classmethod
    def create(
        cls,
        level: str,
        priority: int,
        logger: str,
        side: str,
        worker_id: int | None,
        message: str,
        text: str,
        pretty: bool = False,
    ) -> "LogRecord":
        """Factory method with auto-timestamp."""
        return cls(
            timestamp=datetime.now(timezone.utc),
            level=level,
            priority=priority,
            logger=logger,
            side=side,
            worker_id=worker_id,
            message=message,
            text=text,
            pretty=pretty,
        )
