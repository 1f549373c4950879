"""The interface every service run for the panel implements."""

from __future__ import annotations

from abc import ABC, abstractmethod
from types import TracebackType

__all__ = ["Service"]


class Service(ABC):
    """A service that can be started and closed, and used as a context manager."""

    @abstractmethod
    def start(self) -> None:
        """Start the service."""

    @abstractmethod
    def close(self) -> None:
        """Stop the service and release what it holds."""

    def __enter__(self) -> Service:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.close()