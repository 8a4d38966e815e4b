"""Shared fixtures: in-memory fakes for every adapter, no AWS and no network."""

import os
from datetime import datetime, timedelta, timezone

import pytest
from botocore.exceptions import ClientError
from nacl.signing import SigningKey

from gamesleep.compute import RUNNING
from gamesleep.config import Settings
from gamesleep.errors import AdapterFailure
from gamesleep.probe import OFFLINE
from gamesleep.store import ActivityStore

NOW = 1_700_000_000
INSTANCE = "i-0123456789abcdef0"
ADMIN_ROLE = "999"


def client_error(op="GetItem"):
    return ClientError({"Error": {"Code": "InternalServerError", "Message": "boom"}}, op)


class FakeTable:
    """Mimics the two DynamoDB Table calls the store uses."""

    def __init__(self):
        self.items = {}
        self.fail_reads = False
        self.fail_writes = False
        self.writes = []

    def get_item(self, Key, ConsistentRead=False):
        if self.fail_reads:
            raise client_error("GetItem")
        item = self.items.get(Key["instance_id"])
        return {"Item": dict(item)} if item else {}

    def put_item(self, Item):
        if self.fail_writes:
            raise client_error("PutItem")
        self.items[Item["instance_id"]] = dict(Item)
        self.writes.append(dict(Item))


class FakeCompute:
    def __init__(self, state=RUNNING, address="203.0.113.10", uptime_minutes=60, now=NOW):
        self.state = state
        self.address = address
        self.launch_time = datetime.fromtimestamp(now, tz=timezone.utc) - timedelta(minutes=uptime_minutes)
        self.graceful_supported = True
        self.fail_on = set()
        self.calls = []

    def _maybe_fail(self, name):
        self.calls.append(name)
        if name in self.fail_on:
            raise AdapterFailure(f"{name} failed")

    def describe_status(self, instance_id):
        self._maybe_fail("describe_status")
        return self.state

    def describe_network_address(self, instance_id):
        self._maybe_fail("describe_network_address")
        return self.address

    def describe_launch_time(self, instance_id):
        self._maybe_fail("describe_launch_time")
        return self.launch_time

    def start(self, instance_id):
        self._maybe_fail("start")

    def stop(self, instance_id):
        self._maybe_fail("stop")

    def graceful_stop(self, instance_id):
        self._maybe_fail("graceful_stop")
        return self.graceful_supported


class FakeProbe:
    def __init__(self, occupancy=OFFLINE, names=None):
        self.occupancy = occupancy
        self.names = names
        self.observed = []

    def observe(self, address, port, query_port=None):
        self.observed.append((address, port))
        return self.occupancy

    def list_players(self, address, port, query_port=None):
        return self.names


class FakeWebhook:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    def send(self, token, content):
        if self.fail:
            raise AdapterFailure("webhook down")
        self.sent.append((token, content))
        return 204


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Strip controller env vars for test isolation."""
    for key in list(os.environ):
        if key in ("INSTANCE_ID", "TABLE_NAME", "ADMIN_ROLE_ID", "LOG_LEVEL") or key.startswith(
                ("DISCORD_", "IDLE_", "STARTUP_", "GAME_", "QUERY_", "PROBE_", "STOP_", "GRACEFUL_")):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def signing_key():
    return SigningKey.generate()


@pytest.fixture
def settings(signing_key):
    return Settings(
        instance_id=INSTANCE,
        idle_timeout_seconds=600,
        startup_grace_minutes=15,
        admin_role_id=ADMIN_ROLE,
        public_key=signing_key.verify_key.encode().hex(),
        application_id="1234",
        stop_grace_seconds=30,
    )


@pytest.fixture
def table():
    return FakeTable()


@pytest.fixture
def store(table):
    return ActivityStore(table, clock=lambda: NOW)


@pytest.fixture
def compute():
    return FakeCompute()


@pytest.fixture
def probe():
    return FakeProbe()


@pytest.fixture
def webhook():
    return FakeWebhook()
