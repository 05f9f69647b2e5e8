from __future__ import annotations

import logging
from typing import Callable, Optional, TypeVar

from ..core.config import Settings, get_settings
from ..core.errors import ConcurrentModificationError


logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_on_conflict(
    operation: Callable[[], T],
    attempts: Optional[int] = None,
    settings: Optional[Settings] = None,
) -> T:
    """Run ``operation`` again when it loses an optimistic-lock race.

    ``attempts`` is the number of retries after the first call. It defaults to
    ``conflict_max_retries`` from ``settings``, or from the process-wide
    settings when none are given. The last ``ConcurrentModificationError`` is
    re-raised once the retries are used up; any other error propagates
    immediately.
    """
    if attempts is None:
        attempts = (settings or get_settings()).conflict_max_retries
    attempt = 0
    while True:
        try:
            return operation()
        except ConcurrentModificationError:
            if attempt >= attempts:
                logger.warning("giftcard.conflict.exhausted", extra={"attempts": attempt + 1})
                raise
            attempt += 1
            logger.info("giftcard.conflict.retry", extra={"attempt": attempt})
