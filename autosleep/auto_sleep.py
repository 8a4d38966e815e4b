# autosleep/auto_sleep.py
# -----------------------------------------------------------------------------
# Purpose:
#   Lambda function that periodically checks the game server instance and,
#   once nobody has been online for IDLE_TIMEOUT_SECONDS, stops it (i.e.,
#   "sleeps" it to save cost).
#
# How it’s used:
#   - Triggered by EventBridge rule on a schedule (e.g., rate(5 minutes)).
#   - Reads the instance id and thresholds from environment.
#   - Safe to run repeatedly: if the instance is not running it exits without
#     changes.
#
# Notes:
#   - A freshly started instance is never stopped during its first
#     STARTUP_GRACE_MINUTES: the game needs time to load before anyone can
#     join, so the idle clock is reset instead.
#   - The only state shared with the interactions function is one DynamoDB
#     item (last activity + player count). No locking; last write wins.
#   - Before the EC2 stop, GRACEFUL_STOP_COMMAND (if set) runs on the
#     instance via SSM and the function waits STOP_GRACE_SECONDS so the world
#     can save. Keep the Lambda timeout above that wait.
#   - IAM requirements for the Lambda role:
#       ec2:DescribeInstances, ec2:StopInstances,
#       dynamodb:GetItem, dynamodb:PutItem, ssm:SendCommand (optional)
#     (plus standard CloudWatch Logs permissions).
# -----------------------------------------------------------------------------

from gamesleep.compute import Ec2Controller
from gamesleep.config import Settings
from gamesleep.logs import configure
from gamesleep.monitor import IdleMonitor
from gamesleep.probe import MinecraftProbe
from gamesleep.store import ActivityStore

# Clients are created on the first invocation and reused by warm containers.
_MONITOR = []


def _monitor():
    if not _MONITOR:
        settings = Settings.from_env()
        configure(settings.log_level)
        _MONITOR.append(IdleMonitor(
            settings,
            Ec2Controller.from_settings(settings),
            MinecraftProbe(timeout=settings.probe_timeout),
            ActivityStore.from_settings(settings),
        ))
    return _MONITOR[0]


def handler(event, context):
    """
    EventBridge entry point.

    Logic:
      1) Describe the instance; anything but "running" -> nothing to do.
      2) Resolve its address and launch time; probe the game for players.
      3) Inside the startup grace window, or with players online -> reset
         the idle clock.
      4) Idle for at least the timeout -> graceful stop, wait, EC2 stop.
      5) Otherwise report how long until it would sleep.

    Returns a small JSON object for quick inspection in logs.
    """
    return _monitor().run_pass()
