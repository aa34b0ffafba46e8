"""Startup and shutdown contract shared by the long-lived services."""

from abc import ABC, abstractmethod


class Lifecycle(ABC):
    """Components with explicit startup and shutdown."""

    @abstractmethod
    async def initialize(self) -> None:
        pass

    @abstractmethod
    async def cleanup(self) -> None:
        pass
