"""Interfaces to the external systems the engine drives."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass


@dataclass(frozen=True)
class DriveEntry:
    id: str
    is_container: bool


class Inventory(ABC):
    """Lists what a user or a pool currently holds.

    Each call re-issues a fresh remote query; the iterators are not restartable.
    """

    @abstractmethod
    def list_files(self, owner: str) -> Iterator[DriveEntry]:
        pass

    @abstractmethod
    def list_pool_files(self, pool_id: str) -> Iterator[DriveEntry]:
        pass


class TabularStore(ABC):
    @abstractmethod
    def download(self, resource_id: str, sheet_name: str) -> list[dict[str, str]]:
        pass

    @abstractmethod
    def upload(self, resource_id: str, sheet_name: str, header: tuple[str, ...], rows: list[dict[str, str]]) -> None:
        pass


class PoolProvider(ABC):
    @abstractmethod
    def create_pool(self, name: str) -> str:
        """Create a pool called `name` and return its id."""

    @abstractmethod
    def find_pool(self, name: str) -> str | None:
        """Return the id of an existing pool called `name`, if there is one."""

    @abstractmethod
    def set_pool_attribute(self, pool_id: str, attribute: str, value: str) -> None:
        pass

    @abstractmethod
    def grant_role(self, pool_id: str, identity: str, role: str) -> None:
        pass
