"""Follow-up delivery and the Lambda job runner for deferred interaction work.

A deferred interaction has two halves: the acknowledgment (returned as the
HTTP response, must land within ~3s) and the job (slow cloud/probe work,
finished by posting a follow-up message to the interaction webhook). On
Lambda the job is handed to a second invocation; the dev server runs it as a
background task after the response.
"""

import json
import logging

import boto3
import requests
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .errors import AdapterFailure
from .logs import log_event

log = logging.getLogger(__name__)

DISCORD_API = "https://discord.com/api/v10"
# Discord rejects message content above this length.
MAX_CONTENT = 2000

# The queueing call sits on the acknowledgment path, so it gets one short try.
INVOKE_CONNECT_TIMEOUT = 1
INVOKE_READ_TIMEOUT = 1


class WebhookClient:
    """Posts one follow-up message per interaction token."""

    def __init__(self, application_id, session=None, base_url=DISCORD_API, timeout=10):
        self.application_id = application_id
        self._session = session or requests.Session()
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def send(self, token, content):
        if not self.application_id or not token:
            raise AdapterFailure("follow-up needs an application id and an interaction token")
        if len(content) > MAX_CONTENT:
            content = content[:MAX_CONTENT - 1] + "…"
        url = f"{self._base_url}/webhooks/{self.application_id}/{token}"
        try:
            resp = self._session.post(url, json={"content": content}, timeout=self._timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise AdapterFailure(f"follow-up delivery failed: {e}") from e
        log_event(log, "followup_sent", status=resp.status_code, length=len(content))
        return resp.status_code


class InvokeJobRunner:
    """Hand the job to a fresh asynchronous invocation of this Lambda.

    Lambda freezes the container as soon as the handler returns, so work
    cannot outlive the acknowledgment in-process. The worker invocation runs
    the job synchronously and only returns once the follow-up is delivered.
    """

    def __init__(self, lambda_client, function_name):
        self._lambda = lambda_client
        self._function_name = function_name

    def submit(self, job):
        try:
            resp = self._lambda.invoke(
                FunctionName=self._function_name,
                InvocationType="Event",
                Payload=json.dumps({"followup_job": job}).encode("utf-8"),
            )
        except (BotoCoreError, ClientError) as e:
            raise AdapterFailure(f"async invoke failed: {e}") from e
        log_event(log, "followup_job_queued", kind=job.get("kind"), status=resp.get("StatusCode"))
        return resp.get("StatusCode")

    @classmethod
    def for_function(cls, function_name, region=None, client_factory=None):
        cfg = Config(
            connect_timeout=INVOKE_CONNECT_TIMEOUT,
            read_timeout=INVOKE_READ_TIMEOUT,
            retries={"max_attempts": 1, "mode": "standard"},
            region_name=region,
        )
        return cls((client_factory or boto3.client)("lambda", config=cfg), function_name)
