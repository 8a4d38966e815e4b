"""Interaction dispatcher: classify, acknowledge, and run deferred work.

``Dispatcher.handle`` is the synchronous half. It never touches the network,
so the acknowledgment always fits the platform's 3 second budget. Anything
slow becomes a job (plain JSON) that ``Dispatcher.run_job`` executes later,
ending with exactly one follow-up message.
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Optional

from .compute import PENDING, RUNNING, STOPPED, STOPPING
from .errors import AdapterFailure, AuthenticationFailure, GameSleepError, MalformedRequest
from .logs import log_event
from .signature import require_valid_request

log = logging.getLogger(__name__)

# Inbound interaction types.
PING = 1
APPLICATION_COMMAND = 2
MESSAGE_COMPONENT = 3

# Response types.
PONG = 1
CHANNEL_MESSAGE = 4
DEFERRED_CHANNEL_MESSAGE = 5

UNKNOWN_COMMAND_TEXT = "Unknown command"
UNSUPPORTED_TYPE_TEXT = "Unsupported interaction type"
PERMISSION_DENIED_TEXT = "You don't have permission to stop the server."
FAILURE_PREFIX = "Could not complete:"

# Follow-up text per job kind when the work fails; details stay in the logs.
FAILURE_TEXT = {
    "command:start": f"{FAILURE_PREFIX} the server could not be started.",
    "command:status": f"{FAILURE_PREFIX} the server status could not be read.",
    "command:players": f"{FAILURE_PREFIX} the player list could not be read.",
    "component:stop": f"{FAILURE_PREFIX} the server could not be stopped.",
}
GENERIC_FAILURE_TEXT = f"{FAILURE_PREFIX} something went wrong."

HELP_TEXT = "\n".join([
    "**Game server controls**",
    "`/start` boot the server",
    "`/status` show whether it is up, its address and who is online",
    "`/players` list connected players",
    "`/stop` shut the server down (admins only)",
    "The server sleeps on its own once nobody has been online for a while.",
])

STOP_CONFIRM_TEXT = "Stop the game server? Anyone still connected will be disconnected."

STOP_BUTTONS = [{
    "type": 1,
    "components": [
        {"type": 2, "style": 4, "label": "Stop server", "custom_id": "stop"},
        {"type": 2, "style": 2, "label": "Cancel", "custom_id": "cancel"},
    ],
}]


@dataclass(frozen=True)
class Dispatch:
    """Immediate response body plus the deferred job, if any."""

    response: dict
    job: Optional[dict] = None


def _message(content, components=None):
    data = {"content": content}
    if components:
        data["components"] = components
    return {"type": CHANNEL_MESSAGE, "data": data}


def _job(kind, interaction):
    # Only what the worker needs; the job may cross an async Lambda invoke.
    member = interaction.get("member") or {}
    user = member.get("user") or interaction.get("user") or {}
    return {
        "kind": kind,
        "interaction": {
            "id": interaction.get("id"),
            "token": interaction.get("token"),
            "data": interaction.get("data") or {},
            "roles": list(member.get("roles") or []),
            "user_id": user.get("id"),
        },
    }


class Dispatcher:
    def __init__(self, settings, compute, probe, store, webhook, sleep=time.sleep):
        self.settings = settings
        self.compute = compute
        self.probe = probe
        self.store = store
        self.webhook = webhook
        self._sleep = sleep

        self._commands = {
            "help": self._help,
            "stop": self._stop_prompt,
            "start": self._deferred("command:start"),
            "status": self._deferred("command:status"),
            "players": self._deferred("command:players"),
        }
        self._components = {
            "stop": self._deferred("component:stop"),
            "cancel": lambda interaction: Dispatch(_message("Stop cancelled.")),
        }
        self._jobs = {
            "command:start": self._run_start,
            "command:status": self._run_status,
            "command:players": self._run_players,
            "component:stop": self._run_stop,
        }

    # ------------------------------------------------------------------
    # Synchronous half
    # ------------------------------------------------------------------

    def handle(self, interaction):
        """Classify one interaction and return its immediate response."""
        kind = interaction.get("type")
        data = interaction.get("data") or {}

        if kind == PING:
            return Dispatch({"type": PONG})

        if kind == APPLICATION_COMMAND:
            name = data.get("name", "")
            handler = self._commands.get(name)
            if handler is None:
                log_event(log, "unknown_command", name=name)
                return Dispatch(_message(UNKNOWN_COMMAND_TEXT))
            return handler(interaction)

        if kind == MESSAGE_COMPONENT:
            custom_id = data.get("custom_id", "")
            handler = self._components.get(custom_id)
            if handler is None:
                log_event(log, "unknown_component", custom_id=custom_id)
                return Dispatch(_message(f"Unknown button `{custom_id}`."))
            return handler(interaction)

        log_event(log, "unsupported_interaction", type=kind)
        return Dispatch(_message(UNSUPPORTED_TYPE_TEXT))

    def _help(self, interaction):
        return Dispatch(_message(HELP_TEXT))

    def _stop_prompt(self, interaction):
        return Dispatch(_message(STOP_CONFIRM_TEXT, STOP_BUTTONS))

    def _deferred(self, kind):
        def acknowledge(interaction):
            return Dispatch({"type": DEFERRED_CHANNEL_MESSAGE}, _job(kind, interaction))
        return acknowledge

    # ------------------------------------------------------------------
    # Deferred half
    # ------------------------------------------------------------------

    def run_job(self, job):
        """Do the slow work for ``job`` and deliver one follow-up.

        Never raises: the acknowledgment has already been sent, so failures
        are logged and reported to the user as a follow-up when possible.
        """
        kind = job.get("kind", "")
        interaction = job.get("interaction") or {}
        try:
            runner = self._jobs.get(kind)
            if runner is None:
                raise GameSleepError(f"unknown job kind {kind!r}")
            content = runner(interaction)
        except Exception:
            log.exception("followup job %s failed", kind)
            content = FAILURE_TEXT.get(kind, GENERIC_FAILURE_TEXT)

        try:
            self.webhook.send(interaction.get("token"), content)
        except AdapterFailure as e:
            log_event(log, "followup_undelivered", level=logging.ERROR, kind=kind, error=str(e))
        log_event(log, "followup_job_done", kind=kind)
        return content

    def _run_start(self, interaction):
        instance_id = self.settings.instance_id
        state = self.compute.describe_status(instance_id)
        if state == RUNNING:
            address = self.compute.describe_network_address(instance_id)
            return f"The server is already running at `{address}:{self.settings.game_port}`."
        if state == PENDING:
            return "The server is already starting up. Check `/status` in a minute."
        if state == STOPPING:
            return "The server is still shutting down. Try `/start` again once it has stopped."

        self.compute.start(instance_id)
        # A fresh boot gets a full idle window regardless of an old timestamp.
        self.store.update(instance_id, 0, reset_timestamp=True)
        return "Starting the server. It usually takes a few minutes before you can join."

    def _run_status(self, interaction):
        instance_id = self.settings.instance_id
        state = self.compute.describe_status(instance_id)
        if state == STOPPED:
            return "The server is stopped. Use `/start` to boot it."
        if state == PENDING:
            return "The server is starting up. Check `/status` again in a minute."
        if state == STOPPING:
            return "The server is shutting down."

        address = self.compute.describe_network_address(instance_id)
        if not address:
            return "The server is running but has no network address yet."

        occupancy = self.probe.observe(address, self.settings.game_port, self.settings.query_port)
        if not occupancy.online:
            return (f"The instance is up at `{address}:{self.settings.game_port}` "
                    "but the game is not accepting connections yet.")

        # Only real players move the idle clock; a status check alone must not.
        self.store.update(instance_id, occupancy.count, reset_timestamp=occupancy.count > 0)
        lines = [f"The server is running at `{address}:{self.settings.game_port}`.",
                 f"Players online: {occupancy.count}"]
        if occupancy.count == 0:
            idle = self.store.idle_seconds(instance_id) or 0
            remaining = max(self.settings.idle_timeout_seconds - idle, 0)
            lines.append(f"Idle for {idle // 60} min, it will sleep in about {remaining // 60} min.")
        return "\n".join(lines)

    def _run_players(self, interaction):
        instance_id = self.settings.instance_id
        if self.compute.describe_status(instance_id) != RUNNING:
            return "The server is not running."
        address = self.compute.describe_network_address(instance_id)
        if not address:
            return "The server is running but has no network address yet."

        names = self.probe.list_players(address, self.settings.game_port, self.settings.query_port)
        if names:
            return f"Players online ({len(names)}): " + ", ".join(sorted(names))
        # No roster from the server; report the count instead.
        occupancy = self.probe.observe(address, self.settings.game_port, self.settings.query_port)
        if not occupancy.online:
            return "The game is not accepting connections yet."
        if occupancy.count == 0:
            return "Nobody is online."
        return f"Players online: {occupancy.count} (the server does not share names)."

    def _run_stop(self, interaction):
        admin_role = self.settings.admin_role_id
        if not admin_role or admin_role not in (interaction.get("roles") or []):
            log_event(log, "stop_denied", user_id=interaction.get("user_id"))
            return PERMISSION_DENIED_TEXT

        instance_id = self.settings.instance_id
        state = self.compute.describe_status(instance_id)
        if state in (STOPPED, STOPPING):
            return "The server is already stopped."

        try:
            graceful = self.compute.graceful_stop(instance_id)
        except AdapterFailure as e:
            log_event(log, "graceful_stop_failed", level=logging.WARNING, instance_id=instance_id, error=str(e))
            graceful = False
        if graceful and self.settings.stop_grace_seconds > 0:
            self._sleep(self.settings.stop_grace_seconds)

        self.compute.stop(instance_id)
        log_event(log, "stop_by_user", instance_id=instance_id, user_id=interaction.get("user_id"))
        return "Stopping the server."


# ---------------------------------------------------------------------------
# Request pipeline shared by the Lambda handler and the dev server
# ---------------------------------------------------------------------------

def _expect(container, key, kind, where):
    value = container.get(key)
    if value is not None and not isinstance(value, kind):
        raise MalformedRequest(f"{where}{key} has the wrong type")
    return value or kind()


def parse_interaction(raw):
    """Decode the JSON body; only called after the signature has been checked.

    Fields the dispatcher reads must have their expected shape, so a signed
    but malformed payload is a 400 rather than a crash further down.
    """
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedRequest(f"invalid JSON body: {e}") from e
    if not isinstance(payload, dict):
        raise MalformedRequest("body must be a JSON object")

    _expect(payload, "token", str, "")
    data = _expect(payload, "data", dict, "")
    _expect(data, "name", str, "data.")
    _expect(data, "custom_id", str, "data.")
    member = _expect(payload, "member", dict, "")
    roles = _expect(member, "roles", list, "member.")
    if not all(isinstance(role, str) for role in roles):
        raise MalformedRequest("member.roles must be a list of strings")
    _expect(member, "user", dict, "member.")
    _expect(payload, "user", dict, "")
    return payload


def process_request(raw, headers, dispatcher, public_key):
    """Authenticate -> parse -> dispatch. Returns (status, body, job).

    ``raw`` is the untouched request body and ``headers`` are lower-cased.
    Nothing is parsed, and no command runs, until the signature verifies.
    """
    try:
        require_valid_request(raw, headers, public_key)
    except AuthenticationFailure as e:
        log_event(log, "request_rejected", level=logging.WARNING, reason=str(e))
        return 401, {"error": "invalid request signature"}, None

    try:
        interaction = parse_interaction(raw)
    except MalformedRequest as e:
        log_event(log, "request_malformed", level=logging.WARNING, reason=str(e))
        return 400, {"error": "malformed request body"}, None

    result = dispatcher.handle(interaction)
    data = interaction.get("data") or {}
    log_event(log, "interaction", type=interaction.get("type"),
              name=data.get("name") or data.get("custom_id"),
              response_type=result.response.get("type"), deferred=result.job is not None)
    return 200, result.response, result.job
