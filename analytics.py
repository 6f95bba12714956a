import math
from datetime import datetime
from typing import Optional

from pymongo.database import Database

from database import as_utc, utcnow

GRAPH_WEEKS = 10


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def week_number(date: datetime) -> int:
    """Week of the year, counting Sunday-started weeks from the one holding Jan 1."""
    start = datetime(date.year, 1, 1, tzinfo=date.tzinfo)
    days = (date - start).total_seconds() / 86400
    jan1_weekday = (start.weekday() + 1) % 7  # Sunday = 0
    return math.ceil((days + jan1_weekday + 1) / 7)


def compute_analytics(db: Database, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    leads = list(db["lead"].find({}, {"status": 1, "response_time": 1, "is_missed_chat": 1, "created_at": 1}))

    total = len(leads)
    resolved = sum(1 for lead in leads if lead.get("status") == "Resolved")
    resolved_percentage = _round_half_up(resolved / total * 100) if total else 0

    # 0 means "not replied yet", not an instant reply
    replied = [lead["response_time"] for lead in leads if lead.get("response_time")]
    average_response = _round_half_up(sum(replied) / len(replied)) if replied else 0

    missed_by_week = [0] * GRAPH_WEEKS
    current_week = week_number(now)
    for lead in leads:
        if not lead.get("is_missed_chat"):
            continue
        created = as_utc(lead["created_at"])
        if created.year != now.year:
            continue
        offset = current_week - week_number(created)
        if 0 <= offset < GRAPH_WEEKS:
            missed_by_week[GRAPH_WEEKS - 1 - offset] += 1

    return {
        "totalLeads": total,
        "resolvedPercentage": resolved_percentage,
        "averageResponseTimeSeconds": average_response,
        "missedChatsByWeek": missed_by_week,
    }


def analytics_response(analytics: dict) -> dict:
    """Shape consumed by the dashboard."""
    return {
        "totalLeads": analytics["totalLeads"],
        "totalResolvedLeads": analytics["resolvedPercentage"],
        "averateResponseTime": analytics["averageResponseTimeSeconds"],
        "leadGraph": analytics["missedChatsByWeek"],
    }
