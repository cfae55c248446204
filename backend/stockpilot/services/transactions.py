"""Transaction boundary with bounded retry on optimistic-lock conflicts.

Each mutation is one unit of work: a callable that re-reads everything it
needs, validates, mutates, and returns. If the flush at commit time finds a
versioned row changed underneath it (``StaleDataError``), the session is
rolled back and the unit of work runs again from a fresh read. Validation
errors are never retried.
"""

import logging
from typing import Callable, Optional, TypeVar

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from stockpilot.core.config import settings
from stockpilot.core.exceptions import ConcurrentModification

logger = logging.getLogger(__name__)

T = TypeVar("T")


def run_in_transaction(
    db: Session,
    unit_of_work: Callable[[], T],
    *,
    entity: str,
    entity_id,
    attempts: Optional[int] = None,
) -> T:
    """Run ``unit_of_work`` and commit, retrying stale writes a bounded number of times.

    Raises:
        ConcurrentModification: when every attempt hit a concurrent writer.
    """
    max_attempts = attempts or settings.concurrency_retry_attempts

    for attempt in range(1, max_attempts + 1):
        try:
            result = unit_of_work()
            db.commit()
            return result
        except StaleDataError as e:
            db.rollback()
            logger.warning(
                f"Stale write on {entity} {entity_id} "
                f"(attempt {attempt}/{max_attempts}): {e}"
            )
        except Exception:
            db.rollback()
            raise

    logger.error(f"Giving up on {entity} {entity_id} after {max_attempts} conflicting attempts")
    raise ConcurrentModification(entity, entity_id)
