"""Sequential document numbers with bounded retry on allocation races"""

import logging
from sqlalchemy.orm import Session

from credit_ledger.config import settings
from credit_ledger.domain.adjustments import format_document_number
from credit_ledger.domain.exceptions import ConcurrencyConflict
from credit_ledger.infrastructure.database.repositories import SequenceRepository
from credit_ledger.infrastructure.observability.metrics import sequence_conflicts_counter
from credit_ledger.utils.date_utils import utcnow

logger = logging.getLogger(__name__)


def allocate_number(db: Session, sequence: str, prefix: str, year: int | None = None) -> str:
    """
    Allocate the next `<prefix>-<year><000000>` number for a sequence.

    ConcurrencyConflict is retried up to settings.max_allocation_attempts
    times before it propagates.
    """
    year = year or utcnow().year
    repo = SequenceRepository(db)

    attempt = 0
    while True:
        attempt += 1
        try:
            return format_document_number(prefix, year, repo.next_value(sequence, year))
        except ConcurrencyConflict:
            sequence_conflicts_counter.labels(sequence=sequence).inc()
            if attempt >= settings.max_allocation_attempts:
                raise
            logger.warning(f"Retrying {sequence} number allocation", extra={"attempt": attempt, "year": year})
