"""Building the freedom outbound handler configuration of a node."""

from __future__ import annotations

from typing import Any

from panelnode.config import Config
from panelnode.inbound import BuildError, _parse_ip
from panelnode.models import NodeInfo

__all__ = ["build_outbound", "BuildError"]


def build_outbound(config: Config, node_info: NodeInfo, tag: str) -> dict[str, Any]:
    """Build the freedom outbound for a node as a JSON-ready mapping."""
    outbound: dict[str, Any] = {"protocol": "freedom", "tag": tag}
    if config.send_ip:
        outbound["sendThrough"] = _parse_ip(config.send_ip, "send through")

    domain_strategy = "Asis"
    if config.enable_dns:
        domain_strategy = config.dns_type or "UseIP"
    settings: dict[str, Any] = {"domainStrategy": domain_strategy}
    # The upper-stream inbound of a Shadowsocks-Plugin node forwards to the port below it.
    if node_info.node_type == "dokodemo-door":
        settings["redirect"] = f"127.0.0.1:{node_info.port - 1}"
    outbound["settings"] = settings
    return outbound