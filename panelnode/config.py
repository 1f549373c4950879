"""Controller configuration and its loading from a plain mapping."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from typing import Any, Callable

__all__ = ["Config", "CertConfig", "FallBackConfig", "load_config"]


def _as_str(value: Any, path: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{path}: expected a string, got {type(value).__name__}")
    return value


def _as_bool(value: Any, path: str) -> bool:
    if not isinstance(value, bool):
        raise TypeError(f"{path}: expected a boolean, got {type(value).__name__}")
    return value


def _as_int(value: Any, path: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{path}: expected an integer, got {type(value).__name__}")
    return value


def _as_uint(value: Any, path: str) -> int:
    number = _as_int(value, path)
    if number < 0:
        raise ValueError(f"{path}: expected a non-negative integer, got {number}")
    return number


def _as_str_map(value: Any, path: str) -> dict[str, str]:
    if not isinstance(value, Mapping):
        raise TypeError(f"{path}: expected a mapping, got {type(value).__name__}")
    return {
        _as_str(key, f"{path} key"): _as_str(item, f"{path}.{key}")
        for key, item in value.items()
    }


def _key(name: str, convert: Callable[[Any, str], Any]) -> dict[str, Any]:
    return {"key": name, "convert": convert}


def _decode(cls: type, data: Any, path: str) -> Any:
    """Build a config dataclass from a mapping whose keys match case-insensitively."""
    if not isinstance(data, Mapping):
        raise TypeError(f"{path or 'config'}: expected a mapping, got {type(data).__name__}")
    lowered = {str(key).lower(): value for key, value in data.items()}
    values = {}
    for spec in fields(cls):
        key = spec.metadata["key"]
        if key.lower() not in lowered:
            continue
        raw = lowered[key.lower()]
        if raw is None:
            continue
        field_path = f"{path}.{key}" if path else key
        values[spec.name] = spec.metadata["convert"](raw, field_path)
    return cls(**values)


@dataclass
class FallBackConfig:
    """One fallback destination for VLESS or Trojan inbounds."""

    sni: str = field(default="", metadata=_key("SNI", _as_str))
    alpn: str = field(default="", metadata=_key("Alpn", _as_str))
    path: str = field(default="", metadata=_key("Path", _as_str))
    dest: str = field(default="", metadata=_key("Dest", _as_str))
    proxy_protocol_ver: int = field(default=0, metadata=_key("ProxyProtocolVer", _as_uint))


@dataclass
class CertConfig:
    """Where the TLS certificate comes from: none, file, http or dns."""

    cert_mode: str = field(default="", metadata=_key("CertMode", _as_str))
    reject_unknown_sni: bool = field(default=False, metadata=_key("RejectUnknownSni", _as_bool))
    cert_domain: str = field(default="", metadata=_key("CertDomain", _as_str))
    cert_file: str = field(default="", metadata=_key("CertFile", _as_str))
    key_file: str = field(default="", metadata=_key("KeyFile", _as_str))
    provider: str = field(default="", metadata=_key("Provider", _as_str))
    email: str = field(default="", metadata=_key("Email", _as_str))
    dns_env: dict[str, str] = field(default_factory=dict, metadata=_key("DNSEnv", _as_str_map))


def _as_cert_config(value: Any, path: str) -> CertConfig:
    return _decode(CertConfig, value, path)


def _as_fallbacks(value: Any, path: str) -> list[FallBackConfig]:
    if isinstance(value, (str, bytes, Mapping)) or not hasattr(value, "__iter__"):
        raise TypeError(f"{path}: expected a list, got {type(value).__name__}")
    return [_decode(FallBackConfig, item, f"{path}[{index}]") for index, item in enumerate(value)]


@dataclass
class Config:
    """Settings of one node controller."""

    listen_ip: str = field(default="", metadata=_key("ListenIP", _as_str))
    send_ip: str = field(default="", metadata=_key("SendIP", _as_str))
    update_periodic: int = field(default=0, metadata=_key("UpdatePeriodic", _as_int))
    cert_config: CertConfig | None = field(default=None, metadata=_key("CertConfig", _as_cert_config))
    enable_dns: bool = field(default=False, metadata=_key("EnableDNS", _as_bool))
    dns_type: str = field(default="", metadata=_key("DNSType", _as_str))
    disable_upload_traffic: bool = field(default=False, metadata=_key("DisableUploadTraffic", _as_bool))
    disable_get_rule: bool = field(default=False, metadata=_key("DisableGetRule", _as_bool))
    enable_proxy_protocol: bool = field(default=False, metadata=_key("EnableProxyProtocol", _as_bool))
    enable_fallback: bool = field(default=False, metadata=_key("EnableFallback", _as_bool))
    disable_iv_check: bool = field(default=False, metadata=_key("DisableIVCheck", _as_bool))
    disable_sniffing: bool = field(default=False, metadata=_key("DisableSniffing", _as_bool))
    fallback_configs: list[FallBackConfig] | None = field(
        default=None, metadata=_key("FallBackConfigs", _as_fallbacks)
    )


def load_config(data: Mapping[str, Any]) -> Config:
    """Build a Config from a mapping keyed by the configuration file's names.

    Keys match case-insensitively and unknown keys are ignored.
    """
    return _decode(Config, data, "")