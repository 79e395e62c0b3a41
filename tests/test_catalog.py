"""Tests for the mission catalog registry."""

from pathlib import Path

import pytest

from civicaccess.catalog.registry import MissionCatalog, MissionNotFoundError
from civicaccess.models.mission import (
    MissionCategory,
    MissionDefinition,
    MissionRequirements,
)
from civicaccess.policy.resolver import PolicyResolver


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


def _mission(mission_id: str, title: str = "Mission") -> MissionDefinition:
    return MissionDefinition(
        mission_id=mission_id,
        title=title,
        description="",
        category=MissionCategory.EDUCATION,
        requirements=MissionRequirements(),
    )


@pytest.fixture
def catalog() -> MissionCatalog:
    return MissionCatalog.from_resolver(PolicyResolver.from_config_dir(CONFIG_DIR))


class TestCatalogLoading:
    def test_default_missions(self, catalog: MissionCatalog) -> None:
        assert len(catalog) == 6
        assert "wallet-overview-deck1" in catalog
        assert "nonexistent" not in catalog

    def test_list_preserves_order(self, catalog: MissionCatalog) -> None:
        assert catalog.list_all()[0].mission_id == "wallet-overview-deck1"
        assert catalog.list_all()[-1].mission_id == "admin-command-center"


class TestLookup:
    def test_get_unknown_raises(self, catalog: MissionCatalog) -> None:
        with pytest.raises(MissionNotFoundError) as exc:
            catalog.get("nonexistent")
        assert exc.value.mission_id == "nonexistent"
        assert str(exc.value) == "Mission not found: nonexistent"

    def test_not_found_is_key_error(self, catalog: MissionCatalog) -> None:
        with pytest.raises(KeyError):
            catalog.get("nonexistent")

    def test_find_returns_none(self, catalog: MissionCatalog) -> None:
        assert catalog.find("nonexistent") is None


class TestRegistration:
    def test_last_write_wins(self) -> None:
        catalog = MissionCatalog([_mission("a", "First"), _mission("b")])
        catalog.register([_mission("a", "Second")])
        assert catalog.get("a").title == "Second"
        assert [m.mission_id for m in catalog.list_all()] == ["a", "b"]
        assert len(catalog) == 2

    def test_blank_id_rejected(self) -> None:
        with pytest.raises(ValueError):
            MissionCatalog([_mission("  ")])
