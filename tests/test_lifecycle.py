import uuid

import pytest

from helpdesk import lifecycle
from helpdesk.models import TicketModel, TicketStatus, utcnow


def _ticket(db_session, submitter, status=TicketStatus.OPEN.value, version=0, **kwargs):
    ticket = TicketModel(
        id=str(uuid.uuid4()),
        ticket_number=f"TKT-{uuid.uuid4().int % 100000:05d}",
        title="Laptop will not boot",
        description="Black screen after the vendor logo.",
        status=status,
        priority=kwargs.pop("priority", "medium"),
        submitter_id=submitter.id,
        created_at=utcnow(),
        updated_at=utcnow(),
        version=version,
        **kwargs,
    )
    db_session.add(ticket)
    db_session.commit()
    return ticket


def test_assign_moves_open_ticket_to_in_progress(db_session, create_user):
    submitter = create_user(role="end_user")
    agent = create_user(role="agent")
    ticket = _ticket(db_session, submitter)

    updated = lifecycle.assign(db_session, ticket.id, agent.id, expected_version=0)

    assert updated.assigned_to_id == agent.id
    assert updated.status == "in_progress"
    assert updated.version == 1


def test_assign_keeps_non_open_status(db_session, create_user):
    submitter = create_user(role="end_user")
    agent = create_user(role="agent")
    ticket = _ticket(db_session, submitter, status=TicketStatus.RESOLVED.value, version=4)

    updated = lifecycle.assign(db_session, ticket.id, agent.id, expected_version=4)

    assert updated.status == "resolved"
    assert updated.version == 5


def test_admin_is_a_valid_assignee(db_session, create_user):
    submitter = create_user(role="end_user")
    admin = create_user(role="admin")
    ticket = _ticket(db_session, submitter)

    updated = lifecycle.assign(db_session, ticket.id, admin.id)
    assert updated.assigned_to_id == admin.id


def test_assign_rejects_end_user_and_inactive_agent(db_session, create_user):
    submitter = create_user(role="end_user")
    other_user = create_user(role="end_user")
    inactive_agent = create_user(role="agent", is_active=False)
    ticket = _ticket(db_session, submitter)

    with pytest.raises(lifecycle.RoleViolation):
        lifecycle.assign(db_session, ticket.id, other_user.id, expected_version=0)
    with pytest.raises(lifecycle.RoleViolation):
        lifecycle.assign(db_session, ticket.id, inactive_agent.id, expected_version=0)

    db_session.expire_all()
    unchanged = db_session.get(TicketModel, ticket.id)
    assert unchanged.version == 0
    assert unchanged.assigned_to_id is None


def test_unknown_ticket_and_agent(db_session, create_user):
    submitter = create_user(role="end_user")
    agent = create_user(role="agent")
    ticket = _ticket(db_session, submitter)

    with pytest.raises(lifecycle.TicketNotFound):
        lifecycle.assign(db_session, "does-not-exist", agent.id)
    with pytest.raises(lifecycle.AgentNotFound):
        lifecycle.assign(db_session, ticket.id, 987654)


def test_terminal_tickets_refuse_every_transition(db_session, create_user):
    submitter = create_user(role="end_user")
    agent = create_user(role="agent")
    closed = _ticket(db_session, submitter, status=TicketStatus.CLOSED.value, version=3)
    cancelled = _ticket(db_session, submitter, status=TicketStatus.CANCELLED.value, version=2)

    for ticket in (closed, cancelled):
        with pytest.raises(lifecycle.InvalidState):
            lifecycle.assign(db_session, ticket.id, agent.id, ticket.version)
        with pytest.raises(lifecycle.InvalidState):
            lifecycle.reassign(db_session, ticket.id, agent.id, ticket.version)
        with pytest.raises(lifecycle.InvalidState):
            lifecycle.update_status(db_session, ticket.id, "open", ticket.version)
        with pytest.raises(lifecycle.InvalidState):
            lifecycle.update_priority(db_session, ticket.id, "high", ticket.version)
        with pytest.raises(lifecycle.InvalidState):
            lifecycle.close(db_session, ticket.id, "Fixed by replacing the disk.", ticket.version)


def test_update_status_to_closed_requires_close_operation(db_session, create_user):
    ticket = _ticket(db_session, create_user(role="end_user"))
    with pytest.raises(lifecycle.InvalidState):
        lifecycle.update_status(db_session, ticket.id, "closed", 0)


def test_update_status_rejects_unknown_value(db_session, create_user):
    ticket = _ticket(db_session, create_user(role="end_user"))
    with pytest.raises(lifecycle.LifecycleValidationError):
        lifecycle.update_status(db_session, ticket.id, "archived", 0)


def test_cancel_is_terminal(db_session, create_user):
    ticket = _ticket(db_session, create_user(role="end_user"))
    cancelled = lifecycle.update_status(db_session, ticket.id, "cancelled", 0)
    assert cancelled.status == "cancelled"
    assert lifecycle.is_terminal(cancelled.status)

    with pytest.raises(lifecycle.InvalidState):
        lifecycle.update_priority(db_session, ticket.id, "low", cancelled.version)


def test_update_priority(db_session, create_user):
    ticket = _ticket(db_session, create_user(role="end_user"))
    updated = lifecycle.update_priority(db_session, ticket.id, "critical", 0)
    assert updated.priority == "critical"
    assert updated.version == 1


def test_stale_version_raises_conflict_with_current_version(db_session, create_user):
    ticket = _ticket(db_session, create_user(role="end_user"), version=5)

    with pytest.raises(lifecycle.VersionConflict) as excinfo:
        lifecycle.update_priority(db_session, ticket.id, "high", expected_version=4)

    assert excinfo.value.expected_version == 4
    assert excinfo.value.current_version == 5
    db_session.expire_all()
    assert db_session.get(TicketModel, ticket.id).priority == "medium"


@pytest.mark.parametrize("notes", [None, "", "   ", "too short"])
def test_close_requires_meaningful_notes(db_session, create_user, notes):
    ticket = _ticket(db_session, create_user(role="end_user"))
    with pytest.raises(lifecycle.LifecycleValidationError):
        lifecycle.close(db_session, ticket.id, notes, 0)


def test_close_rejects_notes_over_limit(db_session, create_user):
    ticket = _ticket(db_session, create_user(role="end_user"))
    with pytest.raises(lifecycle.LifecycleValidationError):
        lifecycle.close(db_session, ticket.id, "x" * 5001, 0)


def test_close_validates_notes_before_state(db_session, create_user):
    ticket = _ticket(db_session, create_user(role="end_user"), status=TicketStatus.CLOSED.value)
    with pytest.raises(lifecycle.LifecycleValidationError):
        lifecycle.close(db_session, ticket.id, "short", 0)


def test_close_sets_notes_and_timestamp(db_session, create_user):
    ticket = _ticket(db_session, create_user(role="end_user"), version=2)

    closed = lifecycle.close(db_session, ticket.id, "  Replaced the faulty RAM module.  ", 2)

    assert closed.status == "closed"
    assert closed.closed_at is not None
    assert closed.resolution_notes == "Replaced the faulty RAM module."
    assert closed.version == 3


def test_reassign_keeps_status(db_session, create_user):
    submitter = create_user(role="end_user")
    first = create_user(role="agent")
    second = create_user(role="agent")
    ticket = _ticket(db_session, submitter)

    assigned = lifecycle.assign(db_session, ticket.id, first.id, 0)
    reassigned = lifecycle.reassign(db_session, ticket.id, second.id, assigned.version)

    assert reassigned.assigned_to_id == second.id
    assert reassigned.status == "in_progress"
    assert reassigned.version == 2


def test_missing_expected_version_uses_version_read(db_session, create_user):
    ticket = _ticket(db_session, create_user(role="end_user"), version=7)
    updated = lifecycle.update_priority(db_session, ticket.id, "low", None)
    assert updated.version == 8


def test_bump_version_allowed_on_terminal_ticket(db_session, create_user):
    ticket = _ticket(db_session, create_user(role="end_user"), status=TicketStatus.CLOSED.value, version=3)
    bumped = lifecycle.bump_version(db_session, ticket, 3)
    assert bumped.version == 4

    with pytest.raises(lifecycle.VersionConflict):
        lifecycle.bump_version(db_session, bumped, 3)
