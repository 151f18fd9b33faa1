"""Pick the next quote for a schedule without repeating within a cycle."""

import logging
import random
from typing import Sequence

from .db import Quote
from .errors import NoEligibleQuotes
from .tracking import TrackingLog

logger = logging.getLogger("chatter_quote.selector")


def select_unsent_quote(
    eligible_quotes: Sequence[Quote],
    tracking_log: TrackingLog,
    schedule_name: str,
    rng: random.Random | None = None,
) -> Quote:
    """
    Choose a random quote that hasn't been sent in the current cycle.

    Does *not* record the selection. The only change this may make to the
    tracking log is clearing it when every eligible quote has already been
    sent, which starts a new cycle.

    Raises NoEligibleQuotes if eligible_quotes is empty; the log is left alone.
    """
    if not eligible_quotes:
        raise NoEligibleQuotes(f"No eligible quotes for schedule '{schedule_name}'")

    rng = rng or random
    by_id = {q.id: q for q in eligible_quotes}

    # Second pass only happens after a clear, where unsent == all eligible ids
    for _ in range(2):
        sent_ids = tracking_log.load(schedule_name).ids
        unsent_ids = sorted(by_id.keys() - sent_ids)
        if unsent_ids:
            selected = rng.choice(unsent_ids)
            logger.debug(
                "Schedule '%s': selected quote %d (%d of %d unsent)",
                schedule_name, selected, len(unsent_ids), len(by_id),
            )
            return by_id[selected]
        logger.info(
            "Schedule '%s': all %d eligible quotes sent, starting a new cycle",
            schedule_name, len(by_id),
        )
        tracking_log.clear(schedule_name)

    # A log that doesn't actually clear; treat the whole set as unsent
    logger.warning("Tracking log for '%s' did not clear; ignoring it", schedule_name)
    return by_id[rng.choice(sorted(by_id))]
