"""Records exchanged with the panel."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any

__all__ = [
    "NodeInfo",
    "UserInfo",
    "UserTraffic",
    "NodeStatus",
    "OnlineUser",
    "DetectRule",
    "DetectResult",
]


@dataclass(frozen=True)
class NodeInfo:
    """Description of a node as the panel reports it."""

    node_type: str = ""
    node_id: int = 0
    port: int = 0
    speed_limit: int = 0
    alter_id: int = 0
    transport_protocol: str = ""
    host: str = ""
    path: str = ""
    enable_tls: bool = False
    tls_type: str = ""
    enable_vless: bool = False
    cypher_method: str = ""
    service_name: str = ""
    header: Any = None

    def replace(self, **kwargs: Any) -> NodeInfo:
        """Return a copy with the given fields changed."""
        return dataclasses.replace(self, **kwargs)


@dataclass(frozen=True)
class UserInfo:
    """One user of a node; hashable so lists of users can be compared as sets."""

    uid: int = 0
    email: str = ""
    uuid: str = ""
    passwd: str = ""
    port: int = 0
    alter_id: int = 0
    method: str = ""
    speed_limit: int = 0
    device_limit: int = 0


@dataclass(frozen=True)
class UserTraffic:
    """Traffic used by one user since the last report."""

    uid: int
    email: str
    upload: int
    download: int


@dataclass(frozen=True)
class NodeStatus:
    """Load figures of the machine running the node."""

    cpu: float = 0.0
    mem: float = 0.0
    disk: float = 0.0
    uptime: int = 0


@dataclass(frozen=True)
class OnlineUser:
    """A user seen online from one address."""

    uid: int
    ip: str


@dataclass(frozen=True)
class DetectRule:
    """An audit rule: a pattern that destinations must not match."""

    id: int
    pattern: str


@dataclass(frozen=True)
class DetectResult:
    """A user that triggered an audit rule."""

    uid: int
    rule_id: int