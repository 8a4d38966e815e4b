"""One scheduled pass of the idle-shutdown monitor.

The pass is driven by an external schedule (EventBridge); it never loops or
reschedules itself. Each pass returns a small JSON-able dict describing what
happened, which the Lambda entry point logs and returns.
"""

import logging
import time

from .compute import RUNNING
from .decision import Action, decide, uptime_minutes
from .errors import AdapterFailure
from .logs import log_event

log = logging.getLogger(__name__)


class IdleMonitor:
    """Gather inputs, call ``decide`` and apply the outcome.

    Parameters
    ----------
    settings:
        ``gamesleep.config.Settings``.
    compute:
        EC2 adapter (``describe_status``, ``describe_network_address``,
        ``describe_launch_time``, ``graceful_stop``, ``stop``).
    probe:
        Player-count probe (``observe``).
    store:
        ``ActivityStore``.
    sleep, clock:
        Injected for tests; default to ``time.sleep`` / ``time.time``.
    """

    def __init__(self, settings, compute, probe, store, sleep=time.sleep, clock=time.time):
        self.settings = settings
        self.compute = compute
        self.probe = probe
        self.store = store
        self._sleep = sleep
        self._clock = clock

    def run_pass(self):
        instance_id = self.settings.instance_id
        now = int(self._clock())

        # 1) Only a running instance has anything to check.
        try:
            state = self.compute.describe_status(instance_id)
        except AdapterFailure as e:
            return self._finish({"ok": False, "action": "none", "msg": "status unavailable", "error": str(e)})
        if state != RUNNING:
            return self._finish({"ok": True, "action": "none", "msg": "not running", "state": state})

        # 2) Without an address we can neither probe nor safely act.
        try:
            address = self.compute.describe_network_address(instance_id)
            launched = self.compute.describe_launch_time(instance_id)
        except AdapterFailure as e:
            return self._finish({"ok": False, "action": "none", "msg": "describe failed", "error": str(e)})
        if not address:
            return self._finish({"ok": True, "action": "none", "msg": "no network address"})

        # 3) + 4) Uptime, then players (degrades to zero, never raises).
        uptime = uptime_minutes(launched, now)
        occupancy = self.probe.observe(address, self.settings.game_port, self.settings.query_port)
        base = {
            "uptime_min": round(uptime, 1),
            "players": occupancy.count,
            "reachable": occupancy.online,
        }

        # 6) Players seen: record the count first, then re-read the idle clock.
        if uptime >= self.settings.startup_grace_minutes and occupancy.count > 0:
            self.store.update(instance_id, occupancy.count, reset_timestamp=False, now=now)
        record = self.store.get(instance_id)

        decision = decide(
            state,
            uptime,
            occupancy,
            record,
            now,
            self.settings.idle_timeout_seconds,
            self.settings.startup_grace_minutes,
        )
        result = dict(base, action=decision.action.value, msg=decision.reason)

        if decision.action is Action.RESET:
            persisted = self.store.update(instance_id, occupancy.count, reset_timestamp=True, now=now)
            return self._finish(dict(result, ok=persisted, persisted=persisted))

        if decision.action is Action.STOP:
            result["idle_seconds"] = decision.idle_seconds
            return self._finish(self._shutdown(instance_id, result))

        result.update(ok=True, idle_seconds=decision.idle_seconds,
                      remaining_seconds=decision.remaining_seconds)
        return self._finish(result)

    def _shutdown(self, instance_id, result):
        """Graceful stop (best effort), grace wait, then the EC2 stop."""
        try:
            result["graceful"] = self.compute.graceful_stop(instance_id)
        except AdapterFailure as e:
            log_event(log, "graceful_stop_failed", level=logging.WARNING, instance_id=instance_id, error=str(e))
            result["graceful"] = False

        if self.settings.stop_grace_seconds > 0:
            self._sleep(self.settings.stop_grace_seconds)

        try:
            self.compute.stop(instance_id)
        except AdapterFailure as e:
            log_event(log, "stop_failed", level=logging.ERROR, instance_id=instance_id, error=str(e))
            return dict(result, ok=False, stopped=False, error=str(e))
        return dict(result, ok=True, stopped=True)

    def _finish(self, result):
        level = logging.INFO if result.get("ok") else logging.ERROR
        log_event(log, "monitor_pass", level=level, instance_id=self.settings.instance_id, **result)
        return result
