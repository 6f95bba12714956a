from datetime import datetime, timedelta, timezone

import analytics
import database
from schemas import Lead
from tests.conftest import T0


def _add_lead(db, code, created_at, **fields):
    database.create_document(db, "lead", Lead(ticket_id=code, **fields), now=created_at)


def test_empty_desk_reports_zeros(db):
    assert analytics.compute_analytics(db, T0) == {
        "totalLeads": 0,
        "resolvedPercentage": 0,
        "averageResponseTimeSeconds": 0,
        "missedChatsByWeek": [0] * 10,
    }


def test_resolved_percentage_rounds(db):
    _add_lead(db, "a", T0, status="Resolved")
    _add_lead(db, "b", T0)
    _add_lead(db, "c", T0)
    assert analytics.compute_analytics(db, T0)["resolvedPercentage"] == 33


def test_average_response_time_ignores_unanswered_leads(db):
    _add_lead(db, "a", T0, response_time=100)
    _add_lead(db, "b", T0, response_time=201)
    _add_lead(db, "c", T0, response_time=0)
    _add_lead(db, "d", T0)
    # (100 + 201) / 2 = 150.5, rounded half up
    assert analytics.compute_analytics(db, T0)["averageResponseTimeSeconds"] == 151


def test_week_number():
    utc = timezone.utc
    # Jan 1 2026 is a Thursday
    assert analytics.week_number(datetime(2026, 1, 1, tzinfo=utc)) == 1
    assert analytics.week_number(datetime(2026, 1, 2, 12, tzinfo=utc)) == 1
    assert analytics.week_number(datetime(2026, 1, 4, 12, tzinfo=utc)) == 2
    assert analytics.week_number(T0) == 11


def test_missed_chat_graph_bins_last_ten_weeks(db):
    utc = timezone.utc
    _add_lead(db, "this-week", T0 - timedelta(hours=1), is_missed_chat=True)
    _add_lead(db, "this-week-2", T0 - timedelta(days=1), is_missed_chat=True)
    _add_lead(db, "last-week", T0 - timedelta(days=7), is_missed_chat=True)
    _add_lead(db, "oldest-kept", datetime(2026, 1, 6, 9, tzinfo=utc), is_missed_chat=True)
    _add_lead(db, "too-old", datetime(2026, 1, 2, 9, tzinfo=utc), is_missed_chat=True)
    _add_lead(db, "last-year", datetime(2025, 12, 30, 9, tzinfo=utc), is_missed_chat=True)
    _add_lead(db, "not-missed", T0 - timedelta(hours=2))

    graph = analytics.compute_analytics(db, T0)["missedChatsByWeek"]
    assert graph == [1, 0, 0, 0, 0, 0, 0, 0, 1, 2]


def test_http_shape(db):
    _add_lead(db, "a", T0, status="Resolved", response_time=60)
    body = analytics.analytics_response(analytics.compute_analytics(db, T0))
    assert body == {"totalLeads": 1, "totalResolvedLeads": 100, "averateResponseTime": 60, "leadGraph": [0] * 10}
