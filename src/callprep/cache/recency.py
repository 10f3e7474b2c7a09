"""
Recency check for brief reuse.

A calendar request reuses an existing brief when the same campaign produced a
ready brief for exactly the same prospect emails within the reuse window.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from callprep.cache.history import BriefHistory, email_key
from callprep.logging import get_logger
from callprep.types import ResearchRequest, ResearchType, utc_now

logger = get_logger(__name__)

DEFAULT_REUSE_WINDOW_DAYS = 7


async def find_reusable_brief(
    request: ResearchRequest,
    history: BriefHistory,
    window_days: int = DEFAULT_REUSE_WINDOW_DAYS,
    now: datetime | None = None,
) -> str | None:
    """Return the id of a brief that can be reused for ``request``.

    Ad-hoc and incremental requests never reuse. Matching requires the same
    campaign and an identical sorted, normalized prospect email list; partial
    overlap does not count.

    Args:
        request: Inbound research request.
        history: Brief history to read.
        window_days: Freshness window.
        now: Current time (defaults to UTC now).

    Returns:
        The newest matching brief id, or None.
    """
    if request.type != ResearchType.CALENDAR or request.is_incremental:
        return None

    key = email_key(request.prospect_emails)
    if not key:
        return None

    since = (now or utc_now()) - timedelta(days=window_days)
    for record in await history.find_ready_briefs(request.campaign_id, since):
        if record.prospect_emails == key:
            logger.info(
                "Reusing recent brief",
                brief_id=record.brief_id,
                campaign_id=request.campaign_id,
                created_at=record.created_at.isoformat(),
            )
            return record.brief_id
    return None
