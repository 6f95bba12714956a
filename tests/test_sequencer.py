from datetime import timedelta
from itertools import islice

from bson import ObjectId

import engine
import sequencer
from tests.conftest import T0


def test_base_ticket_id_is_zero_padded():
    assert sequencer.base_ticket_id(T0) == "2026-0310"
    assert sequencer.base_ticket_id(T0.replace(month=11, day=23)) == "2026-1123"


def test_candidates_pad_to_two_digits_and_keep_going_past_99():
    candidates = list(islice(sequencer.candidate_ticket_ids(T0), 102))
    assert candidates[:3] == ["2026-0310", "2026-0310-01", "2026-0310-02"]
    assert candidates[99] == "2026-0310-99"
    assert candidates[100] == "2026-0310-100"


def test_sequential_leads_on_one_day_get_distinct_codes(db, admin):
    ids = [engine.create_lead(db, f"hello {i}", now=T0 + timedelta(minutes=i)) for i in range(12)]
    codes = [db["lead"].find_one({"_id": ObjectId(i)})["ticket_id"] for i in ids]
    assert codes[0] == "2026-0310"
    assert codes[1] == "2026-0310-01"
    assert codes[11] == "2026-0310-11"
    assert len(set(codes)) == len(codes)


def test_new_day_restarts_from_base_code(db, admin):
    engine.create_lead(db, "first", now=T0)
    lead_id = engine.create_lead(db, "next day", now=T0 + timedelta(days=1))
    assert db["lead"].find_one({"_id": ObjectId(lead_id)})["ticket_id"] == "2026-0311"


def test_codes_are_not_reused_after_delete(db, admin):
    first = engine.create_lead(db, "first", now=T0)
    engine.create_lead(db, "second", now=T0)
    engine.delete_lead(db, first, admin)
    third = engine.create_lead(db, "third", now=T0)
    assert db["lead"].find_one({"_id": ObjectId(third)})["ticket_id"] == "2026-0310-02"
    assert db["lead"].count_documents({"ticket_id": "2026-0310"}) == 0


def test_concurrent_creation_collision_is_resequenced(db, admin, monkeypatch):
    engine.create_lead(db, "first visitor", now=T0)

    real_probe = sequencer.next_ticket_id
    probes = []

    def stale_probe(database, now=None):
        # the first probe answers as if the other request had not inserted yet
        probes.append(now)
        if len(probes) == 1:
            return sequencer.base_ticket_id(now)
        return real_probe(database, now)

    monkeypatch.setattr(sequencer, "next_ticket_id", stale_probe)
    engine.create_lead(db, "second visitor", now=T0)

    codes = sorted(lead["ticket_id"] for lead in db["lead"].find())
    assert codes == ["2026-0310", "2026-0310-01"]
    assert len(probes) == 2


def test_unclaimed_existing_lead_code_is_skipped(db, admin):
    db["lead"].insert_one({"ticket_id": "2026-0310", "created_at": T0})

    lead_id = engine.create_lead(db, "hello", now=T0)

    assert db["lead"].find_one({"_id": ObjectId(lead_id)})["ticket_id"] == "2026-0310-01"


def test_lead_insert_collision_is_resequenced(db, admin, monkeypatch):
    db["lead"].insert_one({"ticket_id": "2026-0310", "created_at": T0})

    real_probe = sequencer.next_ticket_id
    probes = []

    def claims_only_probe(database, now=None):
        # the first probe misses the lead that was stored without a claim
        probes.append(now)
        if len(probes) == 1:
            return sequencer.base_ticket_id(now)
        return real_probe(database, now)

    monkeypatch.setattr(sequencer, "next_ticket_id", claims_only_probe)
    lead_id = engine.create_lead(db, "hello", now=T0)

    assert db["lead"].find_one({"_id": ObjectId(lead_id)})["ticket_id"] == "2026-0310-01"
    assert db["lead"].count_documents({"ticket_id": "2026-0310"}) == 1
    assert len(probes) == 2
