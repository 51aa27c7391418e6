import random

import pytest

from santaspin.errors import AlreadySpun, NoAvailableCandidates, NotFound, StorageConflict
from santaspin.extensions import db
from santaspin.models import Participant, PreAssignment
from santaspin.services import assignments
from santaspin.services.assignments import (
    SPIN_COMPLETE,
    SPIN_REPLAY,
    candidate_tiers,
    choose_recipient,
    spin,
)


def snapshot():
    return [
        (p.id, p.has_spun, p.recipient_id, p.spin_result_group, p.has_been_spun, p.replays_remaining)
        for p in Participant.query.order_by(Participant.id).all()
    ]


def _transient(pid, department="PRODUCTION", group="north", has_spun=False, has_been_spun=False):
    return Participant(
        id=pid,
        external_id=f"T{pid}",
        display_name=f"PERSON {pid}",
        department=department,
        group=group,
        has_spun=has_spun,
        has_been_spun=has_been_spun,
    )


# --- candidate tiers ---

def test_tier_a_prefers_waiting_participants_from_other_departments():
    spinner = _transient(1, department="SALES")
    same_dept_waiting = _transient(2, department="SALES", has_spun=True)
    other_dept_waiting = _transient(3, department="LOGISTICS", has_spun=True)
    unspun = _transient(4)

    tiers = dict(candidate_tiers(spinner, [spinner, same_dept_waiting, other_dept_waiting, unspun]))

    assert tiers["A"] == [other_dept_waiting]
    assert tiers["B"] == [same_dept_waiting, other_dept_waiting]
    assert tiers["C"] == [same_dept_waiting, other_dept_waiting, unspun]


def test_tiers_exclude_self_claimed_and_other_groups():
    spinner = _transient(1)
    claimed = _transient(2, has_spun=True, has_been_spun=True)
    elsewhere = _transient(3, group="south")
    ok = _transient(4)

    tiers = dict(candidate_tiers(spinner, [spinner, claimed, elsewhere, ok]))

    assert tiers["A"] == []
    assert tiers["B"] == []
    assert tiers["C"] == [ok]


def test_choose_recipient_falls_back_to_same_department_waiting_list():
    spinner = _transient(1, department="SALES")
    waiting = _transient(2, department="SALES", has_spun=True)
    unspun = _transient(3, department="LOGISTICS")

    for seed in range(20):
        assert choose_recipient(spinner, [waiting, unspun], random.Random(seed)) is waiting


def test_choose_recipient_raises_when_every_tier_is_empty():
    spinner = _transient(1)
    with pytest.raises(NoAvailableCandidates):
        choose_recipient(spinner, [spinner, _transient(2, has_been_spun=True)], random.Random(0))


def test_choose_recipient_is_deterministic_for_a_seed():
    spinner = _transient(1)
    pool = [_transient(i) for i in range(2, 12)]
    first = choose_recipient(spinner, pool, random.Random(7))
    second = choose_recipient(spinner, pool, random.Random(7))
    assert first is second


# --- spin ---

def test_first_spin_picks_from_the_unspun_pool(make_participant, rng, notifier):
    a, b, c, d = (make_participant(name) for name in "ABCD")

    result = spin(a.id, rng=rng, notifier=notifier)

    assert result.recipient_name in {"B", "C", "D"}
    spinner = db.session.get(Participant, a.id)
    chosen = db.session.get(Participant, result.recipient_id)
    assert spinner.has_spun is True
    assert spinner.recipient_id == chosen.id
    assert spinner.spin_result == result.recipient_name
    assert spinner.spin_result_group == "north"
    assert chosen.has_been_spun is True
    assert notifier.events == [(SPIN_COMPLETE, {
        "spinnerId": a.id,
        "spinnerName": "A",
        "recipientName": result.recipient_name,
        "recipientGroup": "north",
    })]


def test_second_spinner_can_pick_the_first_spinner(make_participant, rng):
    a = make_participant("A", department="SALES")
    b = make_participant("B", department="SALES")
    c = make_participant("C", department="LOGISTICS")

    first = spin(a.id, rng=rng)
    others = {"B", "C"} - {first.recipient_name}
    (leftover,) = others
    second_spinner = db.session.get(Participant, b.id if leftover == "B" else c.id)

    # A has spun and is still unclaimed, so A sits in the waiting list tiers.
    result = spin(second_spinner.id, rng=rng)
    assert result.recipient_name == "A"


def test_spin_result_uses_group_label(make_participant, rng):
    a = make_participant("A", group="snacks2")
    make_participant("B", group="snacks2")

    result = spin(a.id, rng=rng)

    assert result.to_dict()["spinResultGroup"] == "Snacks Plant"
    assert result.group == "snacks2"


def test_spins_never_share_a_recipient_or_cross_groups(make_participant):
    rng = random.Random(99)
    people = []
    for group in ("dairies", "swan"):
        for i in range(12):
            people.append(make_participant(f"{group} {i}", department=f"D{i % 3}", group=group))

    order = list(people)
    rng.shuffle(order)
    for p in order:
        try:
            spin(p.id, rng=rng)
        except NoAvailableCandidates:
            # The last spinner of a group may only have themselves left.
            continue

    everyone = Participant.query.all()
    recipients = [p.recipient_id for p in everyone if p.has_spun]
    assert len(recipients) == len(set(recipients))
    by_id = {p.id: p for p in everyone}
    for p in everyone:
        if p.has_spun:
            assert p.recipient_id != p.id
            assert by_id[p.recipient_id].group == p.group
            assert by_id[p.recipient_id].has_been_spun is True
    assert sum(p.has_been_spun for p in everyone) == len(recipients)


def test_spinning_twice_without_replays_fails_and_changes_nothing(make_participant, rng, notifier):
    a = make_participant("A")
    make_participant("B")
    spin(a.id, rng=rng, notifier=notifier)
    before = snapshot()

    with pytest.raises(AlreadySpun):
        spin(a.id, rng=rng, notifier=notifier)

    assert snapshot() == before
    assert len(notifier.events) == 1


def test_replay_allowance_returns_the_same_recipient(make_participant, rng, notifier):
    a = make_participant("A")
    make_participant("B")
    make_participant("C")
    first = spin(a.id, rng=rng)

    spinner = db.session.get(Participant, a.id)
    spinner.is_replayable = True
    spinner.replays_remaining = 2
    db.session.commit()
    edges = [(p.id, p.recipient_id, p.has_been_spun) for p in Participant.query.order_by(Participant.id)]

    replays = [spin(a.id, rng=rng, notifier=notifier) for _ in range(2)]

    assert [r.recipient_name for r in replays] == [first.recipient_name] * 2
    assert all(r.replay for r in replays)
    assert [r.replays_remaining for r in replays] == [1, 0]
    assert db.session.get(Participant, a.id).replays_remaining == 0
    assert [(p.id, p.recipient_id, p.has_been_spun) for p in Participant.query.order_by(Participant.id)] == edges
    assert [event for event, _ in notifier.events] == [SPIN_REPLAY, SPIN_REPLAY]

    with pytest.raises(AlreadySpun):
        spin(a.id, rng=rng)


def test_replay_reads_the_recipients_current_department(make_participant, rng):
    a = make_participant("A")
    b = make_participant("B", department="PACKAGING")
    spin(a.id, rng=rng)

    b = db.session.get(Participant, b.id)
    b.department = "QUALITY"
    spinner = db.session.get(Participant, a.id)
    spinner.is_replayable = True
    spinner.replays_remaining = 1
    db.session.commit()

    assert spin(a.id, rng=rng).department == "QUALITY"


def test_lonely_participant_cannot_spin(make_participant, rng):
    solo = make_participant("SOLO", group="swan")
    make_participant("OTHER", group="dairies")
    before = snapshot()

    with pytest.raises(NoAvailableCandidates):
        spin(solo.id, rng=rng)

    assert snapshot() == before


def test_unknown_participant(app, rng):
    with pytest.raises(NotFound):
        spin(12345, rng=rng)


def test_pre_assignment_is_used_before_random_tiers(make_participant, rng):
    a = make_participant("A")
    make_participant("B")
    c = make_participant("C")
    make_participant("D")
    db.session.add(PreAssignment(spinner_id=a.id, recipient_id=c.id))
    db.session.commit()

    assert spin(a.id, rng=rng).recipient_name == "C"


def test_pre_assignment_to_a_claimed_recipient_is_ignored(make_participant, rng):
    a = make_participant("A")
    b = make_participant("B")
    claimed = make_participant("C", has_been_spun=True)
    db.session.add(PreAssignment(spinner_id=a.id, recipient_id=claimed.id))
    db.session.commit()

    assert spin(a.id, rng=rng).recipient_name == "B"
    assert db.session.get(Participant, b.id).has_been_spun is True


def test_lost_race_raises_storage_conflict_without_partial_write(make_participant, rng, monkeypatch, notifier):
    a = make_participant("A")
    make_participant("B")
    taken = make_participant("C", has_been_spun=True)
    before = snapshot()

    # Simulates another spin claiming the recipient between read and write.
    monkeypatch.setattr(assignments, "choose_recipient", lambda spinner, pool, rng=None: taken)

    with pytest.raises(StorageConflict) as excinfo:
        spin(a.id, rng=rng, notifier=notifier)

    assert excinfo.value.retryable is True
    assert snapshot() == before
    assert notifier.events == []


def test_notifier_failure_does_not_undo_the_spin(make_participant, rng, broken_notifier):
    a = make_participant("A")
    make_participant("B")

    result = spin(a.id, rng=rng, notifier=broken_notifier)

    assert result.recipient_name == "B"
    assert db.session.get(Participant, a.id).has_spun is True
