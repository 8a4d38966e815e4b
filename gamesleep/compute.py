"""EC2 lifecycle adapter for the game server instance.

IAM requirements for the calling role:
    ec2:DescribeInstances, ec2:StartInstances, ec2:StopInstances
    ssm:SendCommand (only when GRACEFUL_STOP_COMMAND is set)
"""

import logging

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .errors import AdapterFailure
from .logs import log_event

log = logging.getLogger(__name__)

STOPPED = "stopped"
PENDING = "pending"
RUNNING = "running"
STOPPING = "stopping"

# EC2 has six states; the controller only distinguishes four.
_STATE_MAP = {
    "pending": PENDING,
    "running": RUNNING,
    "stopping": STOPPING,
    "shutting-down": STOPPING,
    "stopped": STOPPED,
    "terminated": STOPPED,
}


class Ec2Controller:
    """describe/start/stop one EC2 instance by id."""

    def __init__(self, ec2, ssm=None, graceful_stop_command=""):
        self._ec2 = ec2
        self._ssm = ssm
        self._graceful_stop_command = graceful_stop_command

    @classmethod
    def from_settings(cls, settings):
        # Small, standard retry policy; failures still surface to the caller.
        cfg = Config(retries={"max_attempts": 3, "mode": "standard"}, region_name=settings.region)
        ssm = boto3.client("ssm", config=cfg) if settings.graceful_stop_command else None
        return cls(boto3.client("ec2", config=cfg), ssm, settings.graceful_stop_command)

    def _describe(self, instance_id):
        try:
            resp = self._ec2.describe_instances(InstanceIds=[instance_id])
        except (BotoCoreError, ClientError) as e:
            raise AdapterFailure(f"describe_instances failed for {instance_id}: {e}") from e
        for reservation in resp.get("Reservations") or []:
            for instance in reservation.get("Instances") or []:
                if instance.get("InstanceId") == instance_id:
                    return instance
        raise AdapterFailure(f"instance {instance_id} not found")

    def describe_status(self, instance_id):
        name = (self._describe(instance_id).get("State") or {}).get("Name", "")
        return _STATE_MAP.get(name, STOPPED)

    def describe_network_address(self, instance_id):
        """Public IP when present, else private IP, else None."""
        instance = self._describe(instance_id)
        return instance.get("PublicIpAddress") or instance.get("PrivateIpAddress") or None

    def describe_launch_time(self, instance_id):
        launch_time = self._describe(instance_id).get("LaunchTime")
        if launch_time is None:
            raise AdapterFailure(f"instance {instance_id} has no LaunchTime")
        return launch_time

    def start(self, instance_id):
        try:
            self._ec2.start_instances(InstanceIds=[instance_id])
        except (BotoCoreError, ClientError) as e:
            raise AdapterFailure(f"start_instances failed for {instance_id}: {e}") from e
        log_event(log, "instance_start_requested", instance_id=instance_id)

    def stop(self, instance_id):
        try:
            self._ec2.stop_instances(InstanceIds=[instance_id])
        except (BotoCoreError, ClientError) as e:
            raise AdapterFailure(f"stop_instances failed for {instance_id}: {e}") from e
        log_event(log, "instance_stop_requested", instance_id=instance_id)

    @property
    def supports_graceful_stop(self):
        return bool(self._graceful_stop_command and self._ssm is not None)

    def graceful_stop(self, instance_id):
        """Ask the game process to save and exit via SSM Run Command.

        Returns False when no command is configured. The command is fired,
        not awaited; callers wait their own grace interval before stop().
        """
        if not self.supports_graceful_stop:
            return False
        try:
            resp = self._ssm.send_command(
                InstanceIds=[instance_id],
                DocumentName="AWS-RunShellScript",
                Parameters={"commands": [self._graceful_stop_command]},
                Comment="gamesleep graceful stop",
            )
        except (BotoCoreError, ClientError) as e:
            raise AdapterFailure(f"send_command failed for {instance_id}: {e}") from e
        log_event(log, "graceful_stop_sent", instance_id=instance_id,
                  command_id=(resp.get("Command") or {}).get("CommandId"))
        return True
