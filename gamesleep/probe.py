"""Player-count probe for the hosted Minecraft server.

Primary path is the Server List Ping (what the multiplayer menu shows);
the fallback is the UDP query protocol, which only answers when the server
has ``enable-query=true``. Probe failures never propagate: a server that
cannot be asked is treated as having nobody online.
"""

import logging
import socket
from dataclasses import dataclass, field

from mcstatus import JavaServer

from .logs import log_event

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Occupancy:
    online: bool
    count: int = 0
    players: tuple = field(default_factory=tuple)


OFFLINE = Occupancy(online=False, count=0)


def _sample_names(players):
    """Player names from a status sample or a query list, whichever exists."""
    names = getattr(players, "sample", None)
    if names:
        return tuple(p.name for p in names if getattr(p, "name", None))
    names = getattr(players, "list", None) or getattr(players, "names", None)
    if names:
        return tuple(str(n) for n in names)
    return ()


class MinecraftProbe:
    def __init__(self, timeout=3.0, server_factory=JavaServer):
        self.timeout = timeout
        self._server = server_factory

    def is_reachable(self, address, port):
        """Plain TCP connect to the game port."""
        try:
            with socket.create_connection((address, int(port)), timeout=self.timeout):
                return True
        except OSError as e:
            log_event(log, "probe_unreachable", address=address, port=port, error=str(e))
            return False

    def query_occupancy(self, address, port):
        """Server List Ping. Raises on any protocol or network error."""
        status = self._server(address, int(port), timeout=self.timeout).status()
        return Occupancy(
            online=True,
            count=max(int(status.players.online), 0),
            players=_sample_names(status.players),
        )

    def query_fallback(self, address, port):
        """UDP query protocol on the query port. Raises on failure."""
        result = self._server(address, int(port), timeout=self.timeout).query()
        return Occupancy(
            online=True,
            count=max(int(result.players.online), 0),
            players=_sample_names(result.players),
        )

    def list_players(self, address, port, query_port=None):
        """Connected player names, or None when the server exposes no roster.

        Vanilla servers only include a sample of names in the status reply
        (and none at all when ``hide-online-players`` is set), so the query
        protocol is tried when the sample comes back short.
        """
        try:
            occ = self.query_occupancy(address, port)
        except Exception as e:
            log_event(log, "probe_status_failed", address=address, port=port, error=str(e))
            occ = None
        if occ is not None and occ.count == len(occ.players):
            return occ.players
        try:
            fallback = self.query_fallback(address, query_port or port)
            return fallback.players
        except Exception as e:
            log_event(log, "probe_query_failed", address=address, port=query_port or port, error=str(e))
        if occ is not None and occ.players:
            return occ.players
        return None

    def observe(self, address, port, query_port=None):
        """Reachability, then status, then query, then assume nobody online."""
        if not self.is_reachable(address, port):
            return OFFLINE
        try:
            return self.query_occupancy(address, port)
        except Exception as e:
            log_event(log, "probe_status_failed", level=logging.WARNING, address=address, port=port, error=str(e))
        try:
            return self.query_fallback(address, query_port or port)
        except Exception as e:
            log_event(log, "probe_query_failed", level=logging.WARNING,
                      address=address, port=query_port or port, error=str(e))
        return Occupancy(online=True, count=0)
