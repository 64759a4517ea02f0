"""Tests for the snapshot store: seeding, persistence, rollback and migration."""

import json

from models import SCHEMA_VERSION, TicketStatus
from schemas import ActionResult
from store import DirectoryStore, migrate_payload


def test_seeded_office(store):
    data = store.data
    assert [c.id for c in data.counters] == list(range(1, 11))
    assert [s.code_prefix for s in data.services] == ["A", "C", "F", "M", "L"]
    assert data.settings.schema_version == SCHEMA_VERSION
    assert store.user_by_username("emp01").id == 2


def test_snapshot_survives_reload(tmp_path, clock):
    path = str(tmp_path / "queue.db")
    first = DirectoryStore(clock, db_path=path)
    with first.mutation():
        first.data.settings.office_name = "Branch 2"
        first.next_sequence("2026-10-18", 1)
    first.close()

    second = DirectoryStore(clock, db_path=path)
    assert second.data.settings.office_name == "Branch 2"
    # integer keys come back as integers after the JSON round trip
    assert second.data.sequences["2026-10-18"] == {1: 1}
    second.close()


def test_failed_operation_is_rolled_back(office):
    def rename_then_fail():
        office.store.data.settings.office_name = "Changed"
        return ActionResult.failure("validation_error", "nope")

    result = office.run(rename_then_fail)
    assert not result.ok
    assert office.store.data.settings.office_name == "Beneficiary Care Office"


def test_daily_rows_are_added_for_new_business_date(office, clock):
    clock.advance(24 * 3600)
    office.heartbeat(0)
    rows = [r for r in office.store.data.counter_daily if r.work_date == "2026-10-19"]
    assert len(rows) == 10
    assert all(r.enabled_today for r in rows)


def test_migrate_legacy_ticket_shape():
    raw = {
        "settings": {"schema_version": 1, "counter_overrides": []},
        "users": [{"id": 2, "username": "emp01", "password": "1234", "fixed_counter_id": ""}],
        "tickets": [
            {
                "id": 17,
                "ticket_code": "A-001",
                "service_id": 1,
                "full_name": "Sara Ahmed Alqahtani",
                "national_id": "1098765432",
                "phone": "0551234567",
                "beneficiary_type": "citizen",
                "status": "CLOSED",
                "called_round": 2,
                "created_at": "2026-10-18T06:00:00+00:00",
            }
        ],
        "ticket_calls": [
            {"id": 1, "ticket_id": 17, "counter_id": 1, "user_id": 2, "call_round": 1,
             "called_at": "2026-10-18T06:01:00+00:00"},
        ],
    }
    migrated, changed = migrate_payload(json.loads(json.dumps(raw)))
    assert changed
    assert migrated["settings"]["schema_version"] == SCHEMA_VERSION
    assert migrated["settings"]["counter_overrides"] == {}
    assert migrated["users"][0]["fixed_counter_id"] is None
    assert migrated["users"][0]["allowed_service_ids"] == []

    ticket = migrated["tickets"][0]
    assert ticket["id"] == "17"
    assert ticket["status"] == TicketStatus.CLOSED_RESOLVED.value
    assert ticket["call_round"] == 2
    assert ticket["beneficiary"]["national_id"] == "1098765432"
    assert "full_name" not in ticket
    assert migrated["ticket_calls"][0]["ticket_id"] == "17"


def test_migrated_snapshot_loads(tmp_path, clock):
    path = str(tmp_path / "legacy.db")
    seeded = DirectoryStore(clock, db_path=path)
    payload = json.loads(seeded.data.model_dump_json())
    payload["settings"]["schema_version"] = 1
    payload["tickets"] = [
        {"id": 5, "ticket_code": "C-001", "service_id": 2, "full_name": "A B C", "national_id": "12345678",
         "phone": "05512345", "beneficiary_type": "citizen", "status": "NEW",
         "created_at": "2026-10-18T06:00:00+00:00"},
    ]
    seeded._conn.execute("UPDATE store_snapshot SET payload = ? WHERE id = 1", (json.dumps(payload),))
    seeded._conn.commit()
    seeded.close()

    reloaded = DirectoryStore(clock, db_path=path)
    assert reloaded.ticket("5").beneficiary.full_name == "A B C"
    assert reloaded.data.settings.schema_version == SCHEMA_VERSION
    reloaded.close()


def test_current_payload_needs_no_migration(store):
    _, changed = migrate_payload(json.loads(store.data.model_dump_json()))
    assert not changed
