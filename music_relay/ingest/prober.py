"""Estimate the highest message id in a chat without a history API.

Exponential probe: check ``start``, ``2*start``, ``4*start``, ... until a
check fails. The first failing value is returned as an exclusive upper bound
for the historical scan. This is an approximation. Deleted messages below the
real boundary can stop the doubling early, and the bound can overshoot the
newest message by up to a factor of two. The scanner tolerates both.

``refine=True`` additionally binary-searches the last doubling interval for
the first failing id. With gaps in the id space it is still only a best guess.
"""

from __future__ import annotations

import logging

from music_relay.telegram.existence import MessageExistenceChecker

logger = logging.getLogger(__name__)

DEFAULT_PROBE_START = 100


async def probe_max_message_id(
    checker: MessageExistenceChecker,
    start: int = DEFAULT_PROBE_START,
    *,
    refine: bool = False,
) -> int:
    """Return ``max_id`` such that the scan range ``1 .. max_id - 1`` covers the chat.

    Args:
        checker: Existence-check primitive for the source chat.
        start: First id to probe (must be >= 1).
        refine: Binary-search the final doubling interval.

    Returns:
        An id for which the existence check returned ``False``.
    """
    if start < 1:
        raise ValueError(f"probe start must be >= 1, got {start}")

    lo = 0
    hi = start
    while await checker.exists(hi):
        lo = hi
        hi *= 2
        logger.info("Probing size: %d...", hi)

    if refine and hi - lo > 1:
        hi = await _first_missing(checker, lo, hi)

    logger.info("Estimated message range: 1-%d", hi)
    return hi


async def _first_missing(checker: MessageExistenceChecker, lo: int, hi: int) -> int:
    """Smallest failing id in ``(lo, hi]`` assuming ``lo`` exists and ``hi`` does not."""
    while hi - lo > 1:
        mid = (lo + hi) // 2
        if await checker.exists(mid):
            lo = mid
        else:
            hi = mid
    return hi
