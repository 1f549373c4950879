"""Building inbound handler configurations for a node."""

from __future__ import annotations

import ipaddress
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any

from panelnode.config import CertConfig, Config, FallBackConfig
from panelnode.models import NodeInfo

__all__ = [
    "BuildError",
    "CertProvider",
    "network_type",
    "build_inbound",
    "get_cert_file",
    "build_vless_fallbacks",
    "build_trojan_fallbacks",
]

_OCSP_STAPLING = 3600
_SS_PLUGIN = "Shadowsocks-Plugin"

_NETWORKS = {
    "tcp": "tcp",
    "kcp": "mkcp",
    "mkcp": "mkcp",
    "ws": "websocket",
    "websocket": "websocket",
    "h2": "http",
    "http": "http",
    "ds": "domainsocket",
    "domainsocket": "domainsocket",
    "quic": "quic",
    "grpc": "grpc",
    "gun": "grpc",
}

_SECURITY_TYPES = {"", "none", "tls", "xtls"}


class BuildError(ValueError):
    """A handler configuration cannot be built from the given settings."""


class CertProvider(ABC):
    """Obtains certificates through ACME; each call returns (cert_path, key_path)."""

    @abstractmethod
    def dns_cert(
        self, domain: str, email: str, provider: str, dns_env: Mapping[str, str]
    ) -> tuple[str, str]:
        """Obtain a certificate with a DNS challenge."""

    @abstractmethod
    def http_cert(self, domain: str, email: str) -> tuple[str, str]:
        """Obtain a certificate with an HTTP challenge."""

    @abstractmethod
    def renew_cert(
        self,
        domain: str,
        email: str,
        mode: str,
        provider: str,
        dns_env: Mapping[str, str],
    ) -> tuple[str, str]:
        """Renew a certificate obtained earlier with the given challenge mode."""


def network_type(transport_protocol: str) -> str:
    """Return the canonical network name for a transport protocol alias."""
    try:
        return _NETWORKS[transport_protocol.lower()]
    except KeyError:
        raise BuildError(
            f"convert TransportProtocol failed: unknown transport protocol: {transport_protocol}"
        ) from None


def _parse_ip(address: str, purpose: str) -> str:
    host = address[1:-1] if address.startswith("[") and address.endswith("]") else address
    try:
        return str(ipaddress.ip_address(host))
    except ValueError:
        raise BuildError(f"unable to {purpose} domain address: {address}") from None


def _fallbacks(fallback_configs: Iterable[FallBackConfig] | None) -> list[dict[str, Any]]:
    if fallback_configs is None:
        raise BuildError("You must provide FallBackConfigs")
    built = []
    for fallback in fallback_configs:
        if not fallback.dest:
            raise BuildError("Dest is required for fallback")
        built.append(
            {
                "name": fallback.sni,
                "alpn": fallback.alpn,
                "path": fallback.path,
                "dest": fallback.dest,
                "xver": fallback.proxy_protocol_ver,
            }
        )
    return built


def build_vless_fallbacks(
    fallback_configs: Iterable[FallBackConfig] | None,
) -> list[dict[str, Any]]:
    """Build the fallback list of a VLESS inbound."""
    return _fallbacks(fallback_configs)


def build_trojan_fallbacks(
    fallback_configs: Iterable[FallBackConfig] | None,
) -> list[dict[str, Any]]:
    """Build the fallback list of a Trojan inbound."""
    return _fallbacks(fallback_configs)


def get_cert_file(
    cert_config: CertConfig, cert_provider: CertProvider | None = None
) -> tuple[str, str]:
    """Return (cert_file, key_file) for the configured certificate mode."""
    mode = cert_config.cert_mode
    if mode == "file":
        if not cert_config.cert_file or not cert_config.key_file:
            raise BuildError("Cert file path or key file path not exist")
        return cert_config.cert_file, cert_config.key_file
    if mode in ("dns", "http"):
        if cert_provider is None:
            raise BuildError(f"no certificate provider for cert mode: {mode}")
        if mode == "dns":
            return cert_provider.dns_cert(
                cert_config.cert_domain,
                cert_config.email,
                cert_config.provider,
                cert_config.dns_env,
            )
        return cert_provider.http_cert(cert_config.cert_domain, cert_config.email)
    raise BuildError(f"Unsupported certmode: {mode}")


def _proxy_settings(config: Config, node_info: NodeInfo) -> tuple[str, dict[str, Any]]:
    node_type = node_info.node_type
    if node_type == "V2ray":
        if node_info.enable_vless:
            settings: dict[str, Any] = {"decryption": "none"}
            if config.enable_fallback:
                settings["fallbacks"] = build_vless_fallbacks(config.fallback_configs)
            return "vless", settings
        return "vmess", {}
    if node_type == "Trojan":
        settings = {}
        if config.enable_fallback:
            settings["fallbacks"] = build_trojan_fallbacks(config.fallback_configs)
        return "trojan", settings
    if node_type in ("Shadowsocks", _SS_PLUGIN):
        return "shadowsocks", {
            "clients": [{"method": "aes-128-gcm", "password": str(uuid.uuid4())}],
            "network": ["tcp", "udp"],
            "ivCheck": not config.disable_iv_check,
        }
    if node_type == "dokodemo-door":
        return "dokodemo-door", {"address": "v1.mux.cool", "network": ["tcp", "udp"]}
    raise BuildError(
        f"Unsupported node type: {node_type}, Only support: V2ray, Trojan, "
        "Shadowsocks, and Shadowsocks-Plugin"
    )


def _stream_settings(
    config: Config, node_info: NodeInfo, cert_provider: CertProvider | None
) -> dict[str, Any]:
    network = network_type(node_info.transport_protocol)
    stream: dict[str, Any] = {"network": network}
    if network == "tcp":
        tcp: dict[str, Any] = {"acceptProxyProtocol": config.enable_proxy_protocol}
        if node_info.header is not None:
            tcp["header"] = node_info.header
        stream["tcpSettings"] = tcp
    elif network == "websocket":
        stream["wsSettings"] = {
            "acceptProxyProtocol": config.enable_proxy_protocol,
            "path": node_info.path,
            "headers": {"Host": node_info.host},
        }
    elif network == "http":
        stream["httpSettings"] = {"host": [node_info.host], "path": node_info.path}
    elif network == "grpc":
        stream["grpcSettings"] = {"serviceName": node_info.service_name}

    cert_config = config.cert_config
    if node_info.enable_tls:
        if cert_config is None:
            raise BuildError("TLS is enabled but no CertConfig is given")
        if cert_config.cert_mode != "none":
            tls_type = node_info.tls_type
            if tls_type.lower() not in _SECURITY_TYPES:
                raise BuildError(f"unknown security type: {tls_type}")
            stream["security"] = tls_type
            cert_file, key_file = get_cert_file(cert_config, cert_provider)
            tls_settings = {
                "rejectUnknownSni": cert_config.reject_unknown_sni,
                "certificates": [
                    {
                        "certificateFile": cert_file,
                        "keyFile": key_file,
                        "ocspStapling": _OCSP_STAPLING,
                    }
                ],
            }
            if tls_type == "tls":
                stream["tlsSettings"] = tls_settings
            elif tls_type == "xtls":
                stream["xtlsSettings"] = tls_settings

    # The "ws" comparison never matches a canonical name, so websocket gets sockopt too.
    if network not in ("tcp", "ws") and config.enable_proxy_protocol:
        stream["sockopt"] = {"acceptProxyProtocol": True}
    return stream


def build_inbound(
    config: Config,
    node_info: NodeInfo,
    tag: str,
    cert_provider: CertProvider | None = None,
) -> dict[str, Any]:
    """Build the inbound handler configuration of a node as a JSON-ready mapping."""
    if not 0 <= node_info.port <= 0xFFFF:
        raise BuildError(f"invalid port: {node_info.port}")
    inbound: dict[str, Any] = {"tag": tag, "port": node_info.port}
    if node_info.node_type == _SS_PLUGIN:
        inbound["listen"] = "127.0.0.1"
    elif config.listen_ip:
        inbound["listen"] = _parse_ip(config.listen_ip, "listen on")

    inbound["sniffing"] = {
        "enabled": not config.disable_sniffing,
        "destOverride": ["http", "tls"],
    }
    protocol, settings = _proxy_settings(config, node_info)
    inbound["protocol"] = protocol
    inbound["settings"] = settings
    inbound["streamSettings"] = _stream_settings(config, node_info, cert_provider)
    return inbound