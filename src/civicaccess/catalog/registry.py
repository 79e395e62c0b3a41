"""Mission catalog — static registry of mission definitions.

Populated once at startup and read-only afterwards. Registration is
idempotent and last-write-wins on duplicate mission ids; the position of a
re-registered mission in list_all() stays where it was first registered.
"""

from __future__ import annotations

from typing import Iterable

from civicaccess.models.mission import MissionDefinition
from civicaccess.policy.resolver import PolicyResolver


class MissionNotFoundError(KeyError):
    """Raised when a mission id is absent from the catalog."""

    def __init__(self, mission_id: str) -> None:
        super().__init__(mission_id)
        self.mission_id = mission_id

    def __str__(self) -> str:
        return f"Mission not found: {self.mission_id}"


class MissionCatalog:
    """Registry of gated missions.

    Usage:
        catalog = MissionCatalog.from_resolver(resolver)
        mission = catalog.get("wallet-overview-deck1")
        for mission in catalog.list_all():
            ...
    """

    def __init__(self, definitions: Iterable[MissionDefinition] = ()) -> None:
        self._missions: dict[str, MissionDefinition] = {}
        self.register(definitions)

    @classmethod
    def from_resolver(cls, resolver: PolicyResolver) -> MissionCatalog:
        return cls(resolver.mission_definitions())

    def register(self, definitions: Iterable[MissionDefinition]) -> None:
        """Add definitions. Duplicate ids replace the earlier definition."""
        for definition in definitions:
            if not definition.mission_id.strip():
                raise ValueError("mission_id must be non-blank")
            self._missions[definition.mission_id] = definition

    def get(self, mission_id: str) -> MissionDefinition:
        mission = self._missions.get(mission_id)
        if mission is None:
            raise MissionNotFoundError(mission_id)
        return mission

    def find(self, mission_id: str) -> MissionDefinition | None:
        return self._missions.get(mission_id)

    def list_all(self) -> list[MissionDefinition]:
        """Return definitions in insertion order."""
        return list(self._missions.values())

    def __contains__(self, mission_id: object) -> bool:
        return mission_id in self._missions

    def __len__(self) -> int:
        return len(self._missions)
