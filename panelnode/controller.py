"""The node controller: keeps a proxy core in step with the panel."""

from __future__ import annotations

import logging
import os
import shutil
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Sequence
from pathlib import Path
from typing import Any

from panelnode.config import Config
from panelnode.control import CoreServer, ProxyCore
from panelnode.inbound import CertProvider, build_inbound
from panelnode.models import (
    DetectResult,
    DetectRule,
    NodeInfo,
    NodeStatus,
    OnlineUser,
    UserInfo,
    UserTraffic,
)
from panelnode.outbound import build_outbound
from panelnode.service import Service
from panelnode.users import (
    ProxyUser,
    build_ss_plugin_users,
    build_ss_users,
    build_trojan_users,
    build_user_tag,
    build_vless_users,
    build_vmess_users,
)

__all__ = ["ControllerError", "PanelAPI", "Controller", "compare_user_list"]

log = logging.getLogger(__name__)

_SS_PLUGIN = "Shadowsocks-Plugin"
_MAX_ALTER_ID = 0xFFFF


class ControllerError(RuntimeError):
    """The controller cannot apply what the panel describes."""


class PanelAPI(ABC):
    """The panel a node controller talks to."""

    @abstractmethod
    def describe(self) -> Any:
        """Return a description of this client of the panel."""

    @abstractmethod
    def get_node_info(self) -> NodeInfo:
        """Fetch the node's description."""

    @abstractmethod
    def get_user_list(self) -> list[UserInfo]:
        """Fetch the users of the node."""

    @abstractmethod
    def get_node_rule(self) -> tuple[list[DetectRule], list[str] | None]:
        """Fetch the audit rules and the blocked protocols of the node."""

    @abstractmethod
    def report_node_status(self, status: NodeStatus) -> None:
        """Report the load of the machine."""

    @abstractmethod
    def report_user_traffic(self, traffic: list[UserTraffic]) -> None:
        """Report the traffic of users since the last report."""

    @abstractmethod
    def report_node_online_users(self, users: list[OnlineUser]) -> None:
        """Report the users currently online."""

    @abstractmethod
    def report_illegal(self, results: list[DetectResult]) -> None:
        """Report users that triggered audit rules."""


def compare_user_list(
    old: Iterable[UserInfo], new: Iterable[UserInfo]
) -> tuple[list[UserInfo], list[UserInfo]]:
    """Return (deleted, added): users only in old, and users only in new.

    Duplicates are collapsed; deleted keeps the order of old, added that of new.
    """
    old_users = dict.fromkeys(old)
    new_users = dict.fromkeys(new)
    deleted = [user for user in old_users if user not in new_users]
    added = [user for user in new_users if user not in old_users]
    return deleted, added


def _read_proc(path: str) -> str | None:
    try:
        return Path(path).read_text()
    except OSError:
        return None


def _system_status() -> NodeStatus:
    """Best-effort load figures of this machine from the standard library."""
    cpu = 0.0
    try:
        load = os.getloadavg()[0]
        cpu = min(100.0, load / (os.cpu_count() or 1) * 100.0)
    except (AttributeError, OSError):
        pass

    mem = 0.0
    meminfo = _read_proc("/proc/meminfo")
    if meminfo:
        values = {}
        for line in meminfo.splitlines():
            name, _, rest = line.partition(":")
            parts = rest.split()
            if parts and parts[0].isdigit():
                values[name] = int(parts[0])
        total = values.get("MemTotal", 0)
        available = values.get("MemAvailable", values.get("MemFree", 0))
        if total:
            mem = (total - available) / total * 100.0

    disk = 0.0
    try:
        usage = shutil.disk_usage(os.path.abspath(os.sep))
        if usage.total:
            disk = usage.used / usage.total * 100.0
    except OSError:
        pass

    uptime = 0
    uptime_text = _read_proc("/proc/uptime")
    if uptime_text:
        try:
            uptime = int(float(uptime_text.split()[0]))
        except (IndexError, ValueError):
            pass
    return NodeStatus(cpu=cpu, mem=mem, disk=disk, uptime=uptime)


class _Periodic:
    """Runs a task every interval seconds, the first run one interval after start."""

    def __init__(self, interval: float, execute: Callable[[], None], name: str) -> None:
        self.interval = interval
        self.execute = execute
        self.name = name
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.execute()
            except Exception:
                log.exception("periodic task %s failed", self.name)

    def close(self) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()


class Controller(Service):
    """Sets up a node's handlers and users, then follows the panel periodically."""

    def __init__(
        self,
        server: CoreServer,
        api_client: PanelAPI,
        config: Config,
        panel_type: str = "",
        *,
        cert_provider: CertProvider | None = None,
        system_info: Callable[[], NodeStatus] | None = None,
    ) -> None:
        self.core = ProxyCore(server)
        self.api_client = api_client
        self.config = config
        self.panel_type = panel_type
        self.cert_provider = cert_provider
        self.system_info = system_info or _system_status
        self.client_info: Any = None
        self.node_info: NodeInfo | None = None
        self.tag = ""
        self.user_list: list[UserInfo] = []
        self._periodics: list[_Periodic] = []

    def _node(self) -> NodeInfo:
        if self.node_info is None:
            raise ControllerError("the controller has not been started")
        return self.node_info

    def _label(self) -> str:
        node = self._node()
        return f"[{node.node_type}: {node.node_id}]"

    def build_node_tag(self) -> str:
        """Return the tag of the node's handlers: type_listenip_port."""
        node = self._node()
        return f"{node.node_type}_{self.config.listen_ip}_{node.port}"

    def start(self) -> None:
        """Install the node and its users, then start the periodic monitors."""
        self.client_info = self.api_client.describe()
        node_info = self.api_client.get_node_info()
        self.node_info = node_info
        self.tag = self.build_node_tag()
        self._add_new_tag(node_info)

        users = list(self.api_client.get_user_list())
        self.add_new_user(users, node_info)
        self.user_list = users

        try:
            self.core.add_inbound_limiter(self.tag, node_info.speed_limit, users)
        except Exception as error:
            log.warning("%s", error)
        self._update_rules()

        interval = self.config.update_periodic
        if interval <= 0:
            log.warning("%s UpdatePeriodic is %d, monitors not started", self._label(), interval)
            return
        self._periodics = [
            _Periodic(interval, self.node_info_monitor, "node-info-monitor"),
            _Periodic(interval, self.user_info_monitor, "user-report"),
        ]
        log.info("%s Start monitor node status", self._label())
        log.info("%s Start report node status", self._label())
        for periodic in self._periodics:
            periodic.start()

    def close(self) -> None:
        """Stop the periodic monitors."""
        periodics, self._periodics = self._periodics, []
        for periodic in periodics:
            periodic.close()

    def _update_rules(self) -> None:
        if self.config.disable_get_rule:
            return
        try:
            rules, protocols = self.api_client.get_node_rule()
        except Exception as error:
            log.warning("Get rule list failed: %s", error)
            return
        if rules:
            try:
                self.core.update_rule(self.tag, rules)
            except Exception as error:
                log.warning("%s", error)
        if protocols:
            try:
                self.core.update_protocol_rule(self.tag, protocols)
            except Exception as error:
                log.warning("%s", error)

    def _remove_old_tag(self, tag: str) -> None:
        self.core.remove_inbound(tag)
        self.core.remove_outbound(tag)

    def _add_handlers(self, node_info: NodeInfo, tag: str) -> None:
        self.core.add_inbound(build_inbound(self.config, node_info, tag, self.cert_provider))
        self.core.add_outbound(build_outbound(self.config, node_info, tag))

    def _add_new_tag(self, node_info: NodeInfo) -> None:
        if node_info.node_type != _SS_PLUGIN:
            self._add_handlers(node_info, self.tag)
            return
        # A plain Shadowsocks inbound on the node's port, fed by a dokodemo-door
        # inbound one port up that carries the upper transport protocol.
        plain = node_info.replace(transport_protocol="tcp", enable_tls=False)
        self._add_handlers(plain, self.tag)
        upper = node_info.replace(port=node_info.port + 1, node_type="dokodemo-door")
        self._add_handlers(upper, self._plugin_tag())

    def _plugin_tag(self) -> str:
        return f"dokodemo-door_{self.tag}+1"

    def add_new_user(self, users: Sequence[UserInfo], node_info: NodeInfo) -> None:
        """Build proxy users for the node's type and add them to its inbound."""
        node_type = node_info.node_type
        built: list[ProxyUser]
        if node_type == "V2ray":
            if node_info.enable_vless:
                built = build_vless_users(self.tag, users)
            else:
                if self.panel_type == "V2board":
                    if not users:
                        raise ControllerError("no users to take the alter id from")
                    alter_id = users[0].alter_id
                else:
                    alter_id = node_info.alter_id
                if not 0 <= alter_id < _MAX_ALTER_ID:
                    raise ControllerError(
                        "AlterID should between 0 to 1<<16 - 1, set it to 0 for now"
                    )
                built = build_vmess_users(self.tag, users, alter_id)
        elif node_type == "Trojan":
            built = build_trojan_users(self.tag, users)
        elif node_type == "Shadowsocks":
            built = build_ss_users(self.tag, users, node_info.cypher_method)
        elif node_type == _SS_PLUGIN:
            built = build_ss_plugin_users(self.tag, users)
        else:
            raise ControllerError(f"unsupported node type: {node_type}")
        self.core.add_users(built, self.tag)
        log.info("%s Added %d new users", self._label(), len(users))

    def _renew_cert(self) -> None:
        node = self._node()
        cert_config = self.config.cert_config
        if not node.enable_tls or cert_config is None:
            return
        if cert_config.cert_mode not in ("dns", "http"):
            return
        if self.cert_provider is None:
            log.warning("no certificate provider to renew %s", cert_config.cert_domain)
            return
        try:
            self.cert_provider.renew_cert(
                cert_config.cert_domain,
                cert_config.email,
                cert_config.cert_mode,
                cert_config.provider,
                cert_config.dns_env,
            )
        except Exception as error:
            log.warning("%s", error)

    def node_info_monitor(self) -> None:
        """Follow changes of the node and its users; failures are logged."""
        try:
            new_node = self.api_client.get_node_info()
            new_users = list(self.api_client.get_user_list())
        except Exception as error:
            log.warning("%s", error)
            return

        node_changed = False
        if self.node_info != new_node:
            old_tag = self.tag
            try:
                self._remove_old_tag(old_tag)
                if self._node().node_type == _SS_PLUGIN:
                    self._remove_old_tag(self._plugin_tag())
            except Exception as error:
                log.warning("%s", error)
                return
            self.node_info = new_node
            self.tag = self.build_node_tag()
            try:
                self._add_new_tag(new_node)
            except Exception as error:
                log.warning("%s", error)
                return
            node_changed = True
            try:
                self.core.delete_inbound_limiter(old_tag)
            except Exception as error:
                log.warning("%s", error)
                return

        self._update_rules()
        self._renew_cert()

        if node_changed:
            try:
                self.add_new_user(new_users, new_node)
                self.core.add_inbound_limiter(self.tag, new_node.speed_limit, new_users)
            except Exception as error:
                log.warning("%s", error)
                return
        else:
            deleted, added = compare_user_list(self.user_list, new_users)
            if deleted:
                try:
                    self.core.remove_users(
                        [build_user_tag(self.tag, user) for user in deleted], self.tag
                    )
                except Exception as error:
                    log.warning("%s", error)
            if added:
                try:
                    self.add_new_user(added, self._node())
                except Exception as error:
                    log.warning("%s", error)
                try:
                    self.core.update_inbound_limiter(self.tag, added)
                except Exception as error:
                    log.warning("%s", error)
            log.info(
                "%s %d user deleted, %d user added", self._label(), len(deleted), len(added)
            )
        self.user_list = new_users

    def user_info_monitor(self) -> None:
        """Report machine status, user traffic, online users and audit hits."""
        try:
            status = self.system_info()
        except Exception as error:
            log.warning("%s", error)
            status = NodeStatus()
        try:
            self.api_client.report_node_status(status)
        except Exception as error:
            log.warning("%s", error)

        traffic = []
        for user in self.user_list:
            up, down = self.core.get_traffic(build_user_tag(self.tag, user))
            if up > 0 or down > 0:
                traffic.append(
                    UserTraffic(uid=user.uid, email=user.email, upload=up, download=down)
                )
        if traffic and not self.config.disable_upload_traffic:
            try:
                self.api_client.report_user_traffic(traffic)
            except Exception as error:
                log.warning("%s", error)

        try:
            online = self.core.get_online_device(self.tag)
        except Exception as error:
            log.warning("%s", error)
        else:
            if online:
                try:
                    self.api_client.report_node_online_users(online)
                except Exception as error:
                    log.warning("%s", error)
                else:
                    log.info("%s Report %d online users", self._label(), len(online))

        try:
            results = self.core.get_detect_result(self.tag)
        except Exception as error:
            log.warning("%s", error)
        else:
            if results:
                try:
                    self.api_client.report_illegal(results)
                except Exception as error:
                    log.warning("%s", error)
                else:
                    log.info("%s Report %d illegal behaviors", self._label(), len(results))