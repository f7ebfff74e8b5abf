import pytest
from drive_backup.config import SheetsConfig
from drive_backup.errors import RotationFailed, StateInvariantViolation
from drive_backup.models import UNKNOWN_PERCENT, PoolRecord, UsageProjection
from drive_backup.rotator import PoolRotator, next_pool_name, pool_suffix, should_rotate
from drive_backup.store import InMemoryTabularStore, UsageStore

from fakes import NOW, FakePoolProvider, make_pool, registry_rows

BASE = "Legacydrivebackup"


def _projection(item_percent, folder_percent=0.0):
    return UsageProjection(0, 0, 0, 0, item_percent, folder_percent)


@pytest.mark.parametrize(
    "items, folders, fires",
    [
        (80.0, 0.0, True),
        (79.99, 0.0, False),
        (0.0, 80.0, True),
        (79.99, 79.99, False),
        (95.5, 12.0, True),
        (0.0, 0.0, False),
    ],
)
def test_rotation_threshold_boundary(items, folders, fires):
    assert should_rotate(_projection(items, folders), 80) is fires


def test_unknown_usage_never_rotates():
    assert not should_rotate(_projection(UNKNOWN_PERCENT, UNKNOWN_PERCENT), 80)


def test_pool_suffixes():
    assert pool_suffix(BASE, BASE) == 1
    assert pool_suffix(BASE, f"{BASE}2") == 2
    assert pool_suffix(BASE, f"{BASE}12") == 12
    assert pool_suffix(BASE, "Somethingelse3") is None
    assert pool_suffix(BASE, f"{BASE}-old") is None


def test_next_pool_name():
    assert next_pool_name(BASE, []) == BASE
    assert next_pool_name(BASE, [make_pool(BASE, "1")]) == f"{BASE}2"
    assert next_pool_name(BASE, [make_pool(BASE, "1"), make_pool(f"{BASE}2", "2"), make_pool("Other9", "3")]) == (
        f"{BASE}3"
    )
    assert next_pool_name(BASE, [make_pool(f"{BASE}5", "5"), make_pool(BASE, "1")]) == f"{BASE}6"


class RotatorHarness:
    def __init__(self, records, provider=None, organizers=("admin@example.com",)):
        self.tabular = InMemoryTabularStore({"SharedDrives": registry_rows(*records)})
        self.store = UsageStore(self.tabular, "sheet", SheetsConfig())
        self.provider = provider or FakePoolProvider()
        self.rotator = PoolRotator(
            self.store,
            self.provider,
            BASE,
            organizers=list(organizers),
            attributes={"domainusersonly": "true"},
        )

    def registry(self):
        return self.store.load_registry()


def test_rotation_appends_next_pool_and_freezes_previous():
    harness = RotatorHarness([make_pool(BASE, "id1")])
    result = harness.rotator.evaluate(_projection(85.0))

    assert result.rotated
    assert result.previous.drive_name == BASE
    assert result.active.drive_name == f"{BASE}2"
    registry = harness.registry()
    assert [(r.drive_name, r.is_full) for r in registry] == [(BASE, True), (f"{BASE}2", False)]
    assert len([r for r in registry if r.is_active]) == 1
    assert harness.provider.created == [f"{BASE}2"]
    assert harness.provider.attributes == [(f"id-{BASE}2", "domainusersonly", "true")]
    assert harness.provider.grants == [(f"id-{BASE}2", "admin@example.com", "organizer")]


def test_below_threshold_changes_nothing():
    harness = RotatorHarness([make_pool(BASE, "id1")])
    result = harness.rotator.evaluate(_projection(79.99, 50.0))
    assert not result.rotated
    assert result.active.drive_id == "id1"
    assert harness.tabular.uploads == []
    assert harness.provider.created == []


def test_rotation_keeps_older_full_pools_untouched():
    older = make_pool("Archive", "id0", is_full=True)
    harness = RotatorHarness([older, make_pool(BASE, "id1")])
    harness.rotator.rotate(harness.registry(), now=NOW)
    registry = harness.registry()
    assert registry[0] == older
    assert [r.drive_name for r in registry] == ["Archive", BASE, f"{BASE}2"]


def test_every_successful_rotation_leaves_one_active_pool():
    harness = RotatorHarness([make_pool(BASE, "id1")])
    for _ in range(4):
        harness.rotator.rotate(harness.registry())
        assert len([r for r in harness.registry() if r.is_active]) == 1
    assert harness.registry()[-1].drive_name == f"{BASE}5"


def test_interrupted_rotation_adopts_unregistered_pool():
    provider = FakePoolProvider(existing={f"{BASE}2": "already-there"})
    harness = RotatorHarness([make_pool(BASE, "id1")], provider=provider)
    result = harness.rotator.rotate(harness.registry())
    assert result.adopted_existing
    assert result.active.drive_id == "already-there"
    assert provider.created == []
    assert provider.attributes == [("already-there", "domainusersonly", "true")]


def test_create_failure_leaves_registry_untouched():
    harness = RotatorHarness([make_pool(BASE, "id1")], provider=FakePoolProvider(fail_on={"create"}))
    before = harness.registry()
    with pytest.raises(RotationFailed) as exc_info:
        harness.rotator.evaluate(_projection(90.0))
    assert exc_info.value.step == "create"
    assert harness.registry() == before
    assert harness.tabular.uploads == []


def test_registry_failure_is_reported_and_recoverable():
    provider = FakePoolProvider()
    harness = RotatorHarness([make_pool(BASE, "id1")], provider=provider)

    def broken_upload(*args, **kwargs):
        from drive_backup.errors import TransportError

        raise TransportError("sheet unavailable")

    original_upload = harness.tabular.upload
    harness.tabular.upload = broken_upload
    with pytest.raises(RotationFailed) as exc_info:
        harness.rotator.rotate(harness.registry())
    assert exc_info.value.step == "registry"
    assert provider.created == [f"{BASE}2"]

    # Next run finds the pool it already made instead of creating another
    harness.tabular.upload = original_upload
    result = harness.rotator.rotate(harness.registry())
    assert result.adopted_existing
    assert provider.created == [f"{BASE}2"]
    assert [r.drive_name for r in harness.registry()] == [BASE, f"{BASE}2"]


def test_grant_failure_leaves_registry_unchanged_and_is_retried():
    provider = FakePoolProvider(fail_on={"grant"})
    harness = RotatorHarness([make_pool(BASE, "id1")], provider=provider)
    before = harness.registry()
    with pytest.raises(RotationFailed) as exc_info:
        harness.rotator.rotate(harness.registry())
    assert exc_info.value.step == "grant"
    assert "admin@example.com" in str(exc_info.value)
    assert harness.registry() == before
    assert harness.tabular.uploads == []

    provider.fail_on = set()
    result = harness.rotator.rotate(harness.registry())
    assert result.adopted_existing
    assert provider.created == [f"{BASE}2"]
    assert provider.grants == [(f"id-{BASE}2", "admin@example.com", "organizer")]
    assert [(r.drive_name, r.is_full) for r in harness.registry()] == [(BASE, True), (f"{BASE}2", False)]


def test_full_pool_without_last_updated_survives_rotation():
    never_stamped = PoolRecord(drive_name="Oldpool", drive_id="id0", is_full=True, last_updated=None)
    harness = RotatorHarness([never_stamped, make_pool(BASE, "id1")])
    assert harness.tabular.sheets["SharedDrives"][0]["LastUpdated"] == ""

    harness.rotator.rotate(harness.registry(), now=NOW)

    registry = harness.registry()
    assert [r.drive_name for r in registry] == ["Oldpool", BASE, f"{BASE}2"]
    assert registry[0] == never_stamped
    assert harness.tabular.sheets["SharedDrives"][0]["LastUpdated"] == ""


def test_unreadable_registry_row_blocks_rotation():
    harness = RotatorHarness([make_pool(BASE, "id1")])
    harness.tabular.sheets["SharedDrives"].insert(
        0, {"DriveName": "Oldpool", "DriveID": "id0", "IsFull": "Y", "LastUpdated": ""}
    )
    before = [dict(row) for row in harness.tabular.sheets["SharedDrives"]]

    with pytest.raises(StateInvariantViolation, match="row 2"):
        harness.rotator.rotate(harness.registry())

    assert harness.provider.created == []
    assert harness.tabular.uploads == []
    assert harness.tabular.sheets["SharedDrives"] == before


def test_registry_without_active_pool_refuses_to_rotate():
    harness = RotatorHarness([make_pool(BASE, "id1", is_full=True)])
    with pytest.raises(StateInvariantViolation):
        harness.rotator.evaluate(_projection(99.0))
    assert harness.provider.created == []
