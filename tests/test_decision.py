"""Pure decision function properties."""

from datetime import datetime, timedelta, timezone

import pytest

from gamesleep.compute import PENDING, RUNNING, STOPPED, STOPPING
from gamesleep.decision import Action, decide, uptime_minutes
from gamesleep.probe import Occupancy
from gamesleep.store import ActivityRecord

from conftest import INSTANCE, NOW

TIMEOUT = 600
GRACE = 15

OCCUPANCIES = [Occupancy(False, 0), Occupancy(True, 0), Occupancy(True, 3)]
RECORDS = [None, ActivityRecord(INSTANCE, NOW - 5000), ActivityRecord(INSTANCE, NOW - 10), ActivityRecord(INSTANCE, NOW)]


def run(state=RUNNING, uptime=60, occupancy=Occupancy(False, 0), record=None):
    return decide(state, uptime, occupancy, record, NOW, TIMEOUT, GRACE)


@pytest.mark.parametrize("state", [STOPPED, PENDING, STOPPING])
@pytest.mark.parametrize("occupancy", OCCUPANCIES)
@pytest.mark.parametrize("record", RECORDS)
def test_not_running_is_noop(state, occupancy, record):
    assert run(state=state, occupancy=occupancy, record=record).action is Action.NOOP


@pytest.mark.parametrize("uptime", [0, 2, 14.9])
@pytest.mark.parametrize("occupancy", OCCUPANCIES)
@pytest.mark.parametrize("record", RECORDS)
def test_startup_grace_always_resets(uptime, occupancy, record):
    decision = run(uptime=uptime, occupancy=occupancy, record=record)
    assert decision.action is Action.RESET
    assert decision.reason == "startup grace"


@pytest.mark.parametrize("record", RECORDS)
def test_players_online_resets_never_stops(record):
    decision = run(occupancy=Occupancy(True, 3), record=record)
    assert decision.action is Action.RESET


def test_idle_past_timeout_stops():
    decision = run(record=ActivityRecord(INSTANCE, NOW - 700))
    assert decision.action is Action.STOP
    assert decision.idle_seconds == 700


def test_idle_exactly_at_timeout_stops():
    assert run(record=ActivityRecord(INSTANCE, NOW - TIMEOUT)).action is Action.STOP


def test_idle_under_timeout_reports_remaining():
    decision = run(record=ActivityRecord(INSTANCE, NOW - 300))
    assert decision.action is Action.NOOP
    assert decision.reason == "idle but timeout not reached"
    assert decision.idle_seconds == 300
    assert decision.remaining_seconds == 300


def test_missing_record_initializes():
    assert run(record=None).action is Action.RESET


def test_reachable_but_empty_counts_as_idle():
    decision = run(occupancy=Occupancy(True, 0), record=ActivityRecord(INSTANCE, NOW - 900))
    assert decision.action is Action.STOP


def test_uptime_minutes():
    launched = datetime.fromtimestamp(NOW, tz=timezone.utc) - timedelta(minutes=20)
    assert uptime_minutes(launched, NOW) == pytest.approx(20)
    # Naive datetimes are treated as UTC.
    assert uptime_minutes(launched.replace(tzinfo=None), NOW) == pytest.approx(20)
    # Launch time in the future (clock skew) never gives negative uptime.
    assert uptime_minutes(launched + timedelta(hours=1), NOW) == 0
