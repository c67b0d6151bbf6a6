"""Dead-letter policy for chronically failing events.

Defines how many deliveries an event gets, how long a worker may hold it
before it is redelivered, how long to back off between attempts and where
exhausted events end up. Event log adapters apply the policy; workers only
decide whether a failure is worth retrying at all.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

logger = logging.getLogger(__name__)

DEAD_LETTER_FIELDS = ("error", "source_subject", "source_id", "delivery_count", "failed_at")


@dataclass(frozen=True, slots=True)
class DeadLetterPolicy:
    """Redelivery policy with exponential backoff and a delivery budget.

    Attributes:
        max_deliveries: Deliveries allowed before an event is dead-lettered.
        ack_deadline_seconds: Time a delivered event may stay unacknowledged
            before it is redelivered to the consumer group.
        base_delay_seconds: Base delay for exponential backoff.
        max_delay_seconds: Upper bound for the backoff delay.
        suffix: Appended to a subject to name its dead-letter subject.
    """

    max_deliveries: int = 5
    ack_deadline_seconds: float = 300.0
    base_delay_seconds: float = 2.0
    max_delay_seconds: float = 60.0
    suffix: str = ":dead"

    def dead_letter_subject(self, subject: str) -> str:
        """Return the dead-letter subject for a primary subject."""
        return f"{subject}{self.suffix}"

    def is_exhausted(self, delivery_count: int) -> bool:
        """Check whether a delivery exceeds the retry budget.

        Args:
            delivery_count: Number of times the event has been delivered,
                including the delivery being evaluated.

        Returns:
            True if the event must be dead-lettered instead of processed.
        """
        exhausted = delivery_count > self.max_deliveries

        logger.debug(
            "Delivery budget check",
            extra={
                "delivery_count": delivery_count,
                "max": self.max_deliveries,
                "exhausted": exhausted,
            },
        )

        return exhausted

    def calculate_backoff_delay(self, retry_count: int) -> float:
        """Calculate exponential backoff delay for retry.

        Formula: base_delay * (2 ^ (retry_count - 1)), capped at max_delay.
        Example with base_delay=2:
        - Retry 1: 2 seconds (2 * 2^0)
        - Retry 2: 4 seconds (2 * 2^1)
        - Retry 3: 8 seconds (2 * 2^2)

        Args:
            retry_count: Current retry attempt number (1-indexed).

        Returns:
            Delay in seconds before next retry.
        """
        exponent = max(retry_count - 1, 0)
        delay = min(self.base_delay_seconds * (2**exponent), self.max_delay_seconds)

        logger.debug(
            "Calculated backoff delay",
            extra={"retry_count": retry_count, "delay_s": delay},
        )

        return delay

    def build_entry(
        self,
        fields: dict[str, str],
        *,
        error: str,
        source_subject: str,
        source_id: str,
        delivery_count: int,
    ) -> dict[str, str]:
        """Build a dead-letter record from the original entry fields.

        Args:
            fields: Original stream entry fields.
            error: Error message describing the failure.
            source_subject: Subject the entry was delivered from.
            source_id: Position of the entry on that subject.
            delivery_count: Deliveries made before giving up.

        Returns:
            Entry fields for the dead-letter subject.
        """
        return {
            **fields,
            "error": error,
            "source_subject": source_subject,
            "source_id": source_id,
            "delivery_count": str(delivery_count),
            "failed_at": datetime.now(UTC).isoformat(),
        }


@dataclass(frozen=True, slots=True)
class DeadLetterRecord:
    """A dead-lettered entry as read back from a dead-letter subject."""

    position: str
    error: str
    source_subject: str
    source_id: str
    delivery_count: int
    failed_at: str
    fields: dict[str, str]

    @classmethod
    def from_fields(cls, position: str, fields: dict[str, str]) -> "DeadLetterRecord":
        original = {k: v for k, v in fields.items() if k not in DEAD_LETTER_FIELDS}
        return cls(
            position=position,
            error=fields.get("error", ""),
            source_subject=fields.get("source_subject", ""),
            source_id=fields.get("source_id", ""),
            delivery_count=int(fields.get("delivery_count", "0") or 0),
            failed_at=fields.get("failed_at", ""),
            fields=original,
        )


# Export public API
__all__ = ["DEAD_LETTER_FIELDS", "DeadLetterPolicy", "DeadLetterRecord"]
