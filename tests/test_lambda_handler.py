"""Interaction Lambda: status codes, auth-first ordering, job hand-off."""

import base64
import json

import pytest

from gamesleep.errors import AdapterFailure
from gamesleep.interactions import DEFERRED_CHANNEL_MESSAGE, PONG, UNKNOWN_COMMAND_TEXT, Dispatcher
from wake import lambda_function

TS = "1700000000"


class FakeRunner:
    def __init__(self, fail=False):
        self.jobs = []
        self.fail = fail

    def submit(self, job):
        if self.fail:
            raise AdapterFailure("invoke failed")
        self.jobs.append(job)


class FakeContext:
    invoked_function_arn = "arn:aws:lambda:us-east-1:123456789012:function:wake"


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def dispatcher(settings, compute, probe, store, webhook):
    return Dispatcher(settings, compute, probe, store, webhook, sleep=lambda s: None)


@pytest.fixture(autouse=True)
def app(monkeypatch, settings, dispatcher, runner):
    monkeypatch.setattr(lambda_function, "_APP", {"settings": settings, "dispatcher": dispatcher, "runner": runner})


def event(body, signing_key=None, signature=None, b64=False):
    raw = body.encode() if isinstance(body, str) else body
    headers = {"X-Signature-Timestamp": TS}
    if signing_key is not None:
        headers["X-Signature-Ed25519"] = signing_key.sign(TS.encode() + raw).signature.hex()
    elif signature is not None:
        headers["X-Signature-Ed25519"] = signature
    return {
        "headers": headers,
        "body": base64.b64encode(raw).decode() if b64 else raw.decode("utf-8", errors="replace"),
        "isBase64Encoded": b64,
    }


def call(evt):
    resp = lambda_function.handler(evt, FakeContext())
    return resp["statusCode"], json.loads(resp["body"])


def test_ping(signing_key):
    status, body = call(event('{"type": 1}', signing_key))
    assert status == 200
    assert body == {"type": PONG}


def test_bad_signature_is_401_and_has_no_side_effects(signing_key, compute, runner):
    body = json.dumps({"type": 3, "token": "t", "data": {"custom_id": "stop"}, "member": {"roles": ["999"]}})
    status, payload = call(event(body, signature="00" * 64))
    assert status == 401
    assert payload == {"error": "invalid request signature"}
    assert runner.jobs == []
    assert compute.calls == []


def test_missing_signature_header_is_401():
    status, _ = call(event('{"type": 1}'))
    assert status == 401


def test_signature_checked_before_parsing():
    """Garbage with no valid signature is a 401, not a 400."""
    status, _ = call(event("{not json", signature="00" * 64))
    assert status == 401


def test_unparseable_body_is_400(signing_key):
    status, _ = call(event("{not json", signing_key))
    assert status == 400


def test_non_object_body_is_400(signing_key):
    status, _ = call(event("[1, 2]", signing_key))
    assert status == 400


def test_base64_body(signing_key):
    status, body = call(event('{"type": 1}', signing_key, b64=True))
    assert status == 200
    assert body == {"type": PONG}


def test_e_unknown_command_is_200(signing_key):
    status, body = call(event(json.dumps({"type": 2, "data": {"name": "dance"}}), signing_key))
    assert status == 200
    assert body["data"]["content"] == UNKNOWN_COMMAND_TEXT


def test_deferred_command_queues_job(signing_key, runner):
    body = json.dumps({"type": 2, "token": "tok", "data": {"name": "status"}})
    status, payload = call(event(body, signing_key))
    assert status == 200
    assert payload == {"type": DEFERRED_CHANNEL_MESSAGE}
    assert [j["kind"] for j in runner.jobs] == ["command:status"]


def test_queue_failure_answers_directly(signing_key, monkeypatch, settings, dispatcher):
    monkeypatch.setattr(lambda_function, "_APP",
                        {"settings": settings, "dispatcher": dispatcher, "runner": FakeRunner(fail=True)})
    body = json.dumps({"type": 2, "token": "tok", "data": {"name": "status"}})
    status, payload = call(event(body, signing_key))
    assert status == 200
    assert payload["type"] == 4
    assert payload["data"]["content"].startswith("Could not complete:")


def test_worker_mode_runs_job(webhook):
    job = {"kind": "command:status", "interaction": {"token": "tok"}}
    result = lambda_function.handler({"followup_job": job}, FakeContext())
    assert result["ok"] is True
    assert webhook.sent and webhook.sent[0][0] == "tok"


def test_unexpected_error_is_500(signing_key, monkeypatch, dispatcher):
    def explode(interaction):
        raise RuntimeError("boom")

    monkeypatch.setattr(dispatcher, "handle", explode)
    status, payload = call(event('{"type": 1}', signing_key))
    assert status == 500
    assert payload == {"error": "internal error"}


@pytest.mark.parametrize("payload", [
    {"type": 2, "token": "tok", "data": "status"},
    {"type": 3, "token": "tok", "data": {"custom_id": "stop"}, "member": "x"},
    {"type": 2, "token": "tok", "data": {"name": ["x"]}},
    {"type": 3, "token": "tok", "data": {"custom_id": 7}},
    {"type": 3, "token": "tok", "data": {"custom_id": "stop"}, "member": {"roles": "999"}},
    {"type": 3, "token": "tok", "data": {"custom_id": "stop"}, "member": {"roles": [999]}},
    {"type": 2, "token": ["tok"], "data": {"name": "status"}},
])
def test_signed_but_wrongly_shaped_body_is_400(signing_key, runner, payload):
    status, body = call(event(json.dumps(payload), signing_key))
    assert status == 400
    assert body == {"error": "malformed request body"}
    assert runner.jobs == []


def test_runner_client_has_short_budget(monkeypatch, settings, dispatcher):
    from gamesleep import followup

    created = []

    def fake_client(service, config=None):
        created.append(config)
        return object()

    monkeypatch.setattr(followup.boto3, "client", fake_client)
    monkeypatch.setattr(lambda_function, "_APP", {"settings": settings, "dispatcher": dispatcher})
    lambda_function._runner(FakeContext())

    cfg = created[0]
    assert cfg.connect_timeout == 1
    assert cfg.read_timeout == 1
    assert cfg.retries["max_attempts"] == 1
