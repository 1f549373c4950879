"""Operations on a running proxy core: handlers, users, traffic, limiter and rules."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any, Protocol

from panelnode.models import DetectResult, DetectRule, OnlineUser, UserInfo
from panelnode.users import ProxyUser

__all__ = ["ControlError", "CoreServer", "ProxyCore"]


class ControlError(RuntimeError):
    """An operation on the proxy core failed."""


class _UserManager(Protocol):
    def add_user(self, user: ProxyUser) -> None: ...

    def remove_user(self, email: str) -> None: ...


class CoreServer(ABC):
    """The features of a proxy core instance that a node controller drives."""

    @abstractmethod
    def add_inbound_handler(self, config: Mapping[str, Any]) -> None:
        """Create and register an inbound handler from its configuration."""

    @abstractmethod
    def remove_inbound_handler(self, tag: str) -> None:
        """Remove the inbound handler with this tag; raise LookupError if absent."""

    @abstractmethod
    def add_outbound_handler(self, config: Mapping[str, Any]) -> None:
        """Create and register an outbound handler from its configuration."""

    @abstractmethod
    def remove_outbound_handler(self, tag: str) -> None:
        """Remove the outbound handler with this tag; raise LookupError if absent."""

    @abstractmethod
    def get_user_manager(self, tag: str) -> _UserManager | None:
        """Return the user manager of an inbound.

        Raise LookupError if no inbound has this tag; return None if the
        inbound does not manage users.
        """

    @abstractmethod
    def read_counter(self, name: str) -> int | None:
        """Return the value of a stats counter, or None if it does not exist."""

    @abstractmethod
    def reset_counter(self, name: str) -> None:
        """Set a stats counter back to zero."""

    @abstractmethod
    def add_inbound_limiter(self, tag: str, node_speed_limit: int, users: list[UserInfo]) -> None:
        """Install speed and device limits for an inbound."""

    @abstractmethod
    def update_inbound_limiter(self, tag: str, users: list[UserInfo]) -> None:
        """Add or update the limits of some users of an inbound."""

    @abstractmethod
    def delete_inbound_limiter(self, tag: str) -> None:
        """Drop the limits installed for an inbound."""

    @abstractmethod
    def get_online_device(self, tag: str) -> list[OnlineUser]:
        """Return the users seen online on an inbound since the last call."""

    @abstractmethod
    def update_rule(self, tag: str, rules: list[DetectRule]) -> None:
        """Replace the audit rules of an inbound."""

    @abstractmethod
    def update_protocol_rule(self, tag: str, protocols: list[str]) -> None:
        """Replace the list of protocols blocked on an inbound."""

    @abstractmethod
    def get_detect_result(self, tag: str) -> list[DetectResult]:
        """Return the audit hits of an inbound since the last call."""


def _counter_name(email: str, direction: str) -> str:
    return f"user>>>{email}>>>traffic>>>{direction}"


class ProxyCore:
    """Controller-side operations on a CoreServer."""

    def __init__(self, server: CoreServer) -> None:
        self.server = server

    def remove_inbound(self, tag: str) -> None:
        """Remove the inbound handler with this tag."""
        try:
            self.server.remove_inbound_handler(tag)
        except LookupError as error:
            raise ControlError(f"no such inbound handler: {tag}") from error

    def remove_outbound(self, tag: str) -> None:
        """Remove the outbound handler with this tag."""
        try:
            self.server.remove_outbound_handler(tag)
        except LookupError as error:
            raise ControlError(f"no such outbound handler: {tag}") from error

    def add_inbound(self, config: Mapping[str, Any]) -> None:
        """Register an inbound handler built from its configuration."""
        if not isinstance(config, Mapping):
            raise ControlError(f"not an inbound handler config: {config!r}")
        self.server.add_inbound_handler(config)

    def add_outbound(self, config: Mapping[str, Any]) -> None:
        """Register an outbound handler built from its configuration."""
        if not isinstance(config, Mapping):
            raise ControlError(f"not an outbound handler config: {config!r}")
        self.server.add_outbound_handler(config)

    def _user_manager(self, tag: str) -> _UserManager:
        try:
            manager = self.server.get_user_manager(tag)
        except LookupError as error:
            raise ControlError(f"No such inbound tag: {tag}") from error
        if manager is None:
            raise ControlError(f"handler {tag} does not manage users")
        return manager

    def add_users(self, users: Iterable[ProxyUser], tag: str) -> None:
        """Add users to the inbound with this tag, stopping at the first failure."""
        manager = self._user_manager(tag)
        for user in users:
            manager.add_user(user)

    def remove_users(self, emails: Iterable[str], tag: str) -> None:
        """Remove users, by tagged email, from the inbound with this tag."""
        manager = self._user_manager(tag)
        for email in emails:
            manager.remove_user(email)

    def get_traffic(self, email: str) -> tuple[int, int]:
        """Return (uplink, downlink) bytes of a user and reset both counters."""
        totals = []
        for direction in ("uplink", "downlink"):
            name = _counter_name(email, direction)
            value = self.server.read_counter(name)
            if value is None:
                totals.append(0)
            else:
                totals.append(value)
                self.server.reset_counter(name)
        return totals[0], totals[1]

    def add_inbound_limiter(
        self, tag: str, node_speed_limit: int, users: Iterable[UserInfo]
    ) -> None:
        """Install the limiter of an inbound."""
        self.server.add_inbound_limiter(tag, node_speed_limit, list(users))

    def update_inbound_limiter(self, tag: str, users: Iterable[UserInfo]) -> None:
        """Update the limiter of an inbound for the given users."""
        self.server.update_inbound_limiter(tag, list(users))

    def delete_inbound_limiter(self, tag: str) -> None:
        """Remove the limiter of an inbound."""
        self.server.delete_inbound_limiter(tag)

    def update_rule(self, tag: str, rules: Iterable[DetectRule]) -> None:
        """Replace the audit rules of an inbound."""
        self.server.update_rule(tag, list(rules))

    def update_protocol_rule(self, tag: str, protocols: Iterable[str]) -> None:
        """Replace the blocked protocols of an inbound."""
        self.server.update_protocol_rule(tag, list(protocols))

    def get_online_device(self, tag: str) -> list[OnlineUser]:
        """Return the users online on an inbound."""
        return list(self.server.get_online_device(tag))

    def get_detect_result(self, tag: str) -> list[DetectResult]:
        """Return the audit hits on an inbound."""
        return list(self.server.get_detect_result(tag))