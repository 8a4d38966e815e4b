"""Activity record persisted in DynamoDB, one item per monitored instance.

Item shape::

    {"instance_id": "i-0abc...", "last_activity": 1700000000, "player_count": 0}

Both Lambda functions mutate the same item without locking. Every update is a
read-modify-write on a value the writer just read, so a concurrent writer may
cause one lost update, which the idle logic tolerates. The stored timestamp is
never moved backward.
"""

import logging
import time
from dataclasses import dataclass

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .errors import PersistenceFailure
from .logs import log_event

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActivityRecord:
    resource_id: str
    last_activity: int
    player_count: int = 0


class ActivityStore:
    """get/put/update access to the activity table.

    ``table`` is a boto3 ``dynamodb.Table`` (or anything with ``get_item`` and
    ``put_item`` of the same shape).
    """

    def __init__(self, table, clock=time.time):
        self._table = table
        self._clock = clock

    @classmethod
    def from_settings(cls, settings):
        cfg = Config(retries={"max_attempts": 3, "mode": "standard"}, region_name=settings.region)
        dynamodb = boto3.resource("dynamodb", config=cfg)
        return cls(dynamodb.Table(settings.table_name))

    def _now(self):
        return int(self._clock())

    def read(self, resource_id):
        """Fetch the record; raises PersistenceFailure on any table error."""
        try:
            item = self._table.get_item(Key={"instance_id": resource_id}, ConsistentRead=True).get("Item")
        except (BotoCoreError, ClientError) as e:
            raise PersistenceFailure(f"get_item failed for {resource_id}: {e}") from e
        if not item:
            return None
        return ActivityRecord(
            resource_id=resource_id,
            last_activity=int(item.get("last_activity", 0)),
            player_count=max(int(item.get("player_count", 0)), 0),
        )

    def get(self, resource_id):
        """Like read(), but a failed read degrades to None ("no record, initialize")."""
        try:
            return self.read(resource_id)
        except PersistenceFailure as e:
            log_event(log, "store_read_failed", level=logging.WARNING, instance_id=resource_id, error=str(e))
            return None

    def put(self, record):
        """Overwrite the item. Returns False (and logs) when the write fails."""
        try:
            self._table.put_item(Item={
                "instance_id": record.resource_id,
                "last_activity": int(record.last_activity),
                "player_count": max(int(record.player_count), 0),
            })
            return True
        except (BotoCoreError, ClientError) as e:
            log_event(log, "store_write_failed", level=logging.ERROR,
                      instance_id=record.resource_id, error=str(e))
            return False

    def update(self, resource_id, player_count, reset_timestamp, now=None):
        """Apply a Reset or Refresh-count-only update.

        Reset: ``last_activity = now``. Used on direct evidence of activity or
        to initialize the record.
        Refresh-count-only: keep the stored ``last_activity`` (``now`` when the
        record is absent) so a status probe alone never extends the idle clock.
        In both modes the written timestamp is never lower than the one read.
        """
        now = self._now() if now is None else int(now)
        existing = self.get(resource_id)

        if reset_timestamp:
            last_activity = now
        else:
            last_activity = existing.last_activity if existing else now

        if existing and existing.last_activity > last_activity:
            last_activity = existing.last_activity

        ok = self.put(ActivityRecord(resource_id, last_activity, max(int(player_count), 0)))
        log_event(log, "store_update", instance_id=resource_id, reset=bool(reset_timestamp),
                  last_activity=last_activity, player_count=player_count, persisted=ok)
        return ok

    def idle_seconds(self, resource_id, now=None):
        """Seconds since the stored activity timestamp, or None without a record."""
        record = self.get(resource_id)
        if record is None:
            return None
        now = self._now() if now is None else int(now)
        return max(now - record.last_activity, 0)
