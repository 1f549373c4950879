"""Building proxy users from the panel's user list."""

from __future__ import annotations

import enum
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from panelnode.models import UserInfo

__all__ = [
    "CipherType",
    "ProxyUser",
    "AEAD_METHODS",
    "cipher_from_string",
    "build_user_tag",
    "build_vmess_users",
    "build_vless_users",
    "build_trojan_users",
    "build_ss_users",
    "build_ss_plugin_users",
]

_FLOW = "xtls-rprx-direct"
_MAX_ALTER_ID = 0xFFFF


class CipherType(enum.IntEnum):
    """Shadowsocks cipher identifiers."""

    UNKNOWN = 0
    AES_128_GCM = 5
    AES_256_GCM = 6
    CHACHA20_POLY1305 = 7
    XCHACHA20_POLY1305 = 8
    NONE = 9


AEAD_METHODS = frozenset(
    {
        CipherType.AES_128_GCM,
        CipherType.AES_256_GCM,
        CipherType.CHACHA20_POLY1305,
        CipherType.XCHACHA20_POLY1305,
    }
)

_CIPHER_NAMES = {
    "aes-128-gcm": CipherType.AES_128_GCM,
    "aead_aes_128_gcm": CipherType.AES_128_GCM,
    "aes-256-gcm": CipherType.AES_256_GCM,
    "aead_aes_256_gcm": CipherType.AES_256_GCM,
    "chacha20-poly1305": CipherType.CHACHA20_POLY1305,
    "aead_chacha20_poly1305": CipherType.CHACHA20_POLY1305,
    "chacha20-ietf-poly1305": CipherType.CHACHA20_POLY1305,
    "none": CipherType.NONE,
    "plain": CipherType.NONE,
}


@dataclass(frozen=True)
class ProxyUser:
    """A user as handed to an inbound: its tagged email, protocol and account."""

    email: str
    protocol: str
    account: dict[str, Any] = field(default_factory=dict, hash=False)
    level: int = 0


def cipher_from_string(name: str) -> CipherType:
    """Map a cipher name, in any letter case, to its CipherType."""
    return _CIPHER_NAMES.get(name.lower(), CipherType.UNKNOWN)


def build_user_tag(tag: str, user: UserInfo) -> str:
    """Return the user's email as the core sees it: tag|email|uid."""
    return f"{tag}|{user.email}|{user.uid}"


def build_vmess_users(tag: str, users: Iterable[UserInfo], alter_id: int) -> list[ProxyUser]:
    """Build VMess users sharing the server's alter id."""
    if not 0 <= alter_id <= _MAX_ALTER_ID:
        raise ValueError(f"alter id must be between 0 and {_MAX_ALTER_ID}, got {alter_id}")
    return [
        ProxyUser(
            email=build_user_tag(tag, user),
            protocol="vmess",
            account={"id": user.uuid, "alter_id": alter_id, "security": "auto"},
        )
        for user in users
    ]


def build_vless_users(tag: str, users: Iterable[UserInfo]) -> list[ProxyUser]:
    """Build VLESS users keyed by their UUID."""
    return [
        ProxyUser(
            email=build_user_tag(tag, user),
            protocol="vless",
            account={"id": user.uuid, "flow": _FLOW},
        )
        for user in users
    ]


def build_trojan_users(tag: str, users: Iterable[UserInfo]) -> list[ProxyUser]:
    """Build Trojan users whose password is their UUID."""
    return [
        ProxyUser(
            email=build_user_tag(tag, user),
            protocol="trojan",
            account={"password": user.uuid, "flow": _FLOW},
        )
        for user in users
    ]


def _ss_user(tag: str, user: UserInfo, cipher: CipherType) -> ProxyUser:
    return ProxyUser(
        email=build_user_tag(tag, user),
        protocol="shadowsocks",
        account={"password": user.passwd, "cipher_type": cipher},
    )


def build_ss_users(tag: str, users: Iterable[UserInfo], method: str) -> list[ProxyUser]:
    """Build Shadowsocks users that all use the node's cipher."""
    cipher = cipher_from_string(method)
    return [_ss_user(tag, user, cipher) for user in users]


def build_ss_plugin_users(tag: str, users: Iterable[UserInfo]) -> list[ProxyUser]:
    """Build Shadowsocks users with their own cipher, keeping only AEAD ciphers."""
    built = []
    for user in users:
        cipher = cipher_from_string(user.method)
        if cipher in AEAD_METHODS:
            built.append(_ss_user(tag, user, cipher))
    return built