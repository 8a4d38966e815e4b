# wake/lambda_function.py
# -----------------------------------------------------------------------------
# Purpose
#   Discord interactions endpoint for the game server, served by Lambda behind
#   an API Gateway HTTP API. Each inbound request is:
#     1) Authenticated first: Ed25519 signature over timestamp + raw body.
#        Bad or missing signature -> 401, nothing else runs.
#     2) Parsed (400 on invalid JSON) and classified by the dispatcher.
#     3) Answered immediately: pong, a full message, or a "deferred" ack.
#     4) For deferred commands, the slow work (EC2 calls, player probe) is
#        handed to a second, asynchronous invocation of this same function,
#        which posts the result as a follow-up through the interaction webhook.
#
# Why this design?
#   - Discord drops the interaction if no response arrives within 3 seconds.
#     EC2 and the game probe can take longer, so the ack never waits on them.
#   - Lambda freezes the container once the handler returns; in-process
#     background threads would stall. A separate "Event" invocation owns the
#     follow-up and runs it to completion.
#
# Environment variables
#   INSTANCE_ID              – EC2 instance running the game server (required)
#   AWS_REGION               – AWS region (auto-provided by Lambda)
#   DISCORD_PUBLIC_KEY       – application public key (hex)
#   DISCORD_APPLICATION_ID   – application id used in follow-up webhook URLs
#   ADMIN_ROLE_ID            – Discord role allowed to stop the server
#   TABLE_NAME               – DynamoDB table holding the activity record
#   GAME_PORT / QUERY_PORT   – game and query ports (default 25565)
#   GRACEFUL_STOP_COMMAND    – optional shell command run via SSM before stop
#
# IAM permissions required for the Lambda role
#   - ec2:DescribeInstances, ec2:StartInstances, ec2:StopInstances
#   - dynamodb:GetItem, dynamodb:PutItem on the activity table
#   - lambda:InvokeFunction on this function (self-invoke for follow-ups)
#   - ssm:SendCommand (only with GRACEFUL_STOP_COMMAND)
# -----------------------------------------------------------------------------

import base64
import binascii
import json
import logging

from gamesleep.compute import Ec2Controller
from gamesleep.config import Settings
from gamesleep.errors import AdapterFailure, MalformedRequest
from gamesleep.followup import InvokeJobRunner, WebhookClient
from gamesleep.interactions import CHANNEL_MESSAGE, Dispatcher, process_request
from gamesleep.logs import configure, log_event
from gamesleep.probe import MinecraftProbe
from gamesleep.store import ActivityStore

log = logging.getLogger("wake")

# Built once per container on first use, so imports stay side-effect free.
_APP = {}


def _app():
    if not _APP:
        settings = Settings.from_env()
        configure(settings.log_level)
        _APP["settings"] = settings
        _APP["dispatcher"] = Dispatcher(
            settings,
            Ec2Controller.from_settings(settings),
            MinecraftProbe(timeout=settings.probe_timeout),
            ActivityStore.from_settings(settings),
            WebhookClient(settings.application_id),
        )
    return _APP


def _runner(context):
    """Job runner targeting this function (resolved from the invocation context)."""
    if "runner" not in _APP:
        _APP["runner"] = InvokeJobRunner.for_function(context.invoked_function_arn, _APP["settings"].region)
    return _APP["runner"]


# ---------- Small helpers ----------

def _response(status, payload):
    return {
        "statusCode": status,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(payload),
    }


def _raw_body(event) -> bytes:
    """Request body exactly as received (API Gateway may base64 it)."""
    body = event.get("body") or ""
    if event.get("isBase64Encoded"):
        try:
            return base64.b64decode(body, validate=True)
        except binascii.Error as e:
            raise MalformedRequest(f"invalid base64 body: {e}") from e
    return body.encode("utf-8")


def _headers(event):
    return {str(k).lower(): v for k, v in (event.get("headers") or {}).items()}


# ---------- Lambda entry point ----------

def handler(event, context):
    """
    Main handler:
      - Worker mode: the event carries a "followup_job" queued by an earlier
        invocation -> run it to completion and return a summary.
      - Request mode: authenticate, dispatch, queue the deferred job (if any)
        and return the immediate response.
    """
    try:
        app = _app()
        dispatcher = app["dispatcher"]

        if "followup_job" in event:
            content = dispatcher.run_job(event["followup_job"])
            return {"ok": True, "kind": event["followup_job"].get("kind"), "content": content}

        try:
            raw = _raw_body(event)
        except MalformedRequest as e:
            log_event(log, "request_malformed", level=logging.WARNING, reason=str(e))
            return _response(400, {"error": "malformed request body"})

        status, body, job = process_request(raw, _headers(event), dispatcher, app["settings"].public_key)

        if job is not None:
            try:
                _runner(context).submit(job)
            except AdapterFailure as e:
                # Could not hand off the work: answer directly instead of
                # leaving the user with a "thinking..." indicator.
                log_event(log, "followup_queue_failed", level=logging.ERROR, error=str(e))
                body = {"type": CHANNEL_MESSAGE, "data": {"content": "Could not complete: the request could not be queued."}}
        return _response(status, body)
    except Exception:
        log.exception("unhandled error in interactions handler")
        return _response(500, {"error": "internal error"})
