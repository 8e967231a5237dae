from __future__ import annotations

from datetime import datetime, timezone

import pytest

from siteqa.domain.enums import ActivityType
from siteqa.domain.models import Activity
from siteqa.services.activity import (
    activity_type_for_status,
    build_activity_message,
    present_activity,
)


@pytest.mark.parametrize(
    ("activity_type", "kwargs", "expected"),
    [
        (ActivityType.COMMENT, {}, 'Sam commented on "Logo blurry"'),
        (ActivityType.STATUS, {"status": "inProgress"}, 'Sam changed the status of "Logo blurry" to inProgress'),
        (ActivityType.PRIORITY, {"priority": "high"}, 'Sam set the priority of "Logo blurry" to high'),
        (
            ActivityType.DUE_DATE,
            {"due_date": datetime(2026, 7, 1, tzinfo=timezone.utc)},
            'Sam set the due date of "Logo blurry" to 2026-07-01',
        ),
        (ActivityType.DUE_DATE, {}, 'Sam set the due date of "Logo blurry" to no due date'),
        (ActivityType.COMPLETED, {}, 'Sam marked "Logo blurry" as done'),
    ],
)
def test_build_activity_message(activity_type, kwargs, expected) -> None:
    assert build_activity_message(activity_type, "Sam", "Logo blurry", **kwargs) == expected


def test_build_activity_message_without_names() -> None:
    assert build_activity_message(ActivityType.CREATED, "", "") == "Someone created a report"


def test_activity_type_for_status() -> None:
    assert activity_type_for_status("done") == ActivityType.COMPLETED
    assert activity_type_for_status("inProgress") == ActivityType.STATUS


def test_present_activity_adds_icon_and_color() -> None:
    activity = Activity(
        id="a1",
        user_id="u1",
        actor_id="u2",
        type="priority",
        report_id="r1",
        message="m",
        priority="high",
        created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )
    presented = present_activity(activity)
    assert presented["icon"] == "flag"
    assert presented["color"] == "red"
    assert presented["created_at"] == "2026-01-01T00:00:00+00:00"


def test_present_activity_unknown_type_uses_default() -> None:
    activity = Activity(
        id="a2",
        user_id="u1",
        actor_id="u2",
        type="legacy",
        message="m",
        created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )
    assert present_activity(activity)["icon"] == "activity"
