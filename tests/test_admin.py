import pytest

from santaspin.errors import AlreadySpun, NotFound, ValidationFailed
from santaspin.extensions import db
from santaspin.models import Participant, PreAssignment
from santaspin.services import admin
from santaspin.services.assignments import SPIN_COMPLETE, spin


def test_generate_identifier_creates_eight_digit_ids(app):
    participant, new_id = admin.generate_identifier(" temi ojo ", "Sales ", "swan")

    assert len(new_id) == 8 and new_id.isdigit()
    assert participant.external_id == new_id
    assert participant.display_name == "TEMI OJO"
    assert participant.department == "Sales"


def test_generate_identifier_updates_same_name_and_department(app):
    first, first_id = admin.generate_identifier("Temi Ojo", "Sales", "swan")
    second, second_id = admin.generate_identifier("TEMI OJO", "Sales", "dairies")

    assert first.id == second.id
    assert Participant.query.count() == 1
    assert second.external_id == second_id
    assert second.group == "dairies"


def test_generate_identifier_requires_all_fields(app):
    with pytest.raises(ValidationFailed):
        admin.generate_identifier("Temi", "", "swan")


def test_reset_releases_both_sides(make_participant, rng):
    a = make_participant("A", external_id="100")
    b = make_participant("B")
    spin(a.id, rng=rng)
    db.session.get(Participant, a.id).gift_shared = "Yes"
    db.session.commit()

    released = admin.reset_participant("100")

    assert released.id == b.id
    a, b = db.session.get(Participant, a.id), db.session.get(Participant, b.id)
    assert (a.has_spun, a.recipient_id, a.spin_result_group, a.gift_shared) == (False, None, None, "No")
    assert b.has_been_spun is False
    # Both are eligible again.
    assert spin(a.id, rng=rng).recipient_name == "B"


def test_reset_of_unknown_participant(app):
    with pytest.raises(NotFound):
        admin.reset_participant("missing")
    with pytest.raises(NotFound):
        admin.reset_spin(999)


def test_reset_all_recipient_flags(make_participant):
    make_participant("A", has_been_spun=True)
    make_participant("B", has_been_spun=True)
    make_participant("C")

    assert admin.reset_all_recipient_flags() == 2
    assert Participant.query.filter_by(has_been_spun=True).count() == 0


def test_gift_status_must_be_yes_or_no(make_participant):
    p = make_participant("A")

    assert admin.set_gift_shared(p.id, "yes").gift_shared == "Yes"
    with pytest.raises(ValidationFailed):
        admin.set_gift_shared(p.id, "Maybe")
    assert db.session.get(Participant, p.id).gift_shared == "Yes"


def test_grant_replays(make_participant):
    make_participant("A", external_id="100")

    p = admin.grant_replays("100", 2)
    assert (p.is_replayable, p.replays_remaining) == (True, 2)

    p = admin.grant_replays("100", 0)
    assert (p.is_replayable, p.replays_remaining) == (False, 0)

    with pytest.raises(ValidationFailed):
        admin.grant_replays("100", -1)
    with pytest.raises(ValidationFailed):
        admin.grant_replays("100", "lots")


def test_assign_directly(make_participant, notifier):
    a = make_participant("A", external_id="1")
    b = make_participant("B", external_id="2")

    admin.assign_directly("1", "2", notifier=notifier)

    a, b = db.session.get(Participant, a.id), db.session.get(Participant, b.id)
    assert a.recipient_id == b.id and a.has_spun is True
    assert b.has_been_spun is True
    assert notifier.events[0][0] == SPIN_COMPLETE


def test_assign_directly_guards(make_participant):
    make_participant("A", external_id="1")
    make_participant("B", external_id="2", has_been_spun=True)
    make_participant("C", external_id="3", group="swan")
    make_participant("D", external_id="4", has_spun=True)
    make_participant("E", external_id="5")

    with pytest.raises(ValidationFailed):
        admin.assign_directly("1", "1")
    with pytest.raises(ValidationFailed):
        admin.assign_directly("1", "3")
    with pytest.raises(ValidationFailed):
        admin.assign_directly("1", "2")
    with pytest.raises(AlreadySpun):
        admin.assign_directly("4", "5")
    assert Participant.query.filter_by(has_spun=True).count() == 1


def test_pre_assignments(make_participant):
    make_participant("A", external_id="1")
    make_participant("B", external_id="2")
    make_participant("C", external_id="3")
    make_participant("X", external_id="9", group="swan")

    admin.set_pre_assignment("1", "2")
    admin.set_pre_assignment("1", "3")
    assert admin.list_pre_assignments() == [
        {"spinner": "1", "spinnerName": "A", "recipient": "3", "recipientName": "C"},
    ]

    with pytest.raises(ValidationFailed):
        admin.set_pre_assignment("1", "9")

    assert admin.clear_pre_assignment("1") is True
    assert admin.clear_pre_assignment("1") is False
    assert PreAssignment.query.count() == 0


def test_change_external_id(make_participant):
    make_participant("A", external_id="1")
    make_participant("B", external_id="2")

    assert admin.change_external_id("1", "10016132").external_id == "10016132"
    with pytest.raises(ValidationFailed):
        admin.change_external_id("2", "10016132")
    with pytest.raises(NotFound):
        admin.change_external_id("1", "3")


def test_lookup_and_remind(make_participant, rng):
    a = make_participant("A", external_id="1")
    make_participant("B", department="PACKAGING", group="north")

    info = admin.lookup(" 1 ")
    assert info["name"] == "A" and info["canSpin"] is True

    with pytest.raises(ValidationFailed):
        admin.remind("1")

    spin(a.id, rng=rng)
    assert admin.lookup("1")["canSpin"] is False
    assert admin.remind("1") == {
        "spinResultName": "B",
        "spinResultDept": "PACKAGING",
        "spinResultGroup": "north",
    }


def test_reset_keeps_whoever_picked_the_participant(make_participant):
    b = make_participant("B", external_id="200", has_been_spun=True)
    a = make_participant("A", external_id="100", has_spun=True, has_been_spun=True,
                         recipient_id=b.id, spin_result_group="north")
    picker = make_participant("P", has_spun=True, recipient_id=a.id, spin_result_group="north")

    admin.reset_participant("100")

    a = db.session.get(Participant, a.id)
    assert a.has_spun is False and a.has_been_spun is True
    assert db.session.get(Participant, picker.id).recipient_id == a.id
