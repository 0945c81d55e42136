import threading

import pytest

from helpdesk import lifecycle
from helpdesk.models import TicketModel


def test_stale_version_header_loses(client, auth_headers, create_ticket):
    submitter_headers, _ = auth_headers(role="end_user")
    agent1_headers, agent1 = auth_headers(role="agent", username="conc_agent1")
    agent2_headers, agent2 = auth_headers(role="agent", username="conc_agent2")
    ticket = create_ticket(submitter_headers)

    current = client.get(f"/api/tickets/{ticket['id']}", headers=agent1_headers)
    assert current.status_code == 200
    version = current.json()["version"]
    assert current.headers["ETag"] == f'"{version}"'

    r1 = client.put(f"/api/tickets/{ticket['id']}/assign", json={"agent_id": agent1.id}, headers={**agent1_headers, "X-IF-VERSION": str(version)})
    assert r1.status_code == 200

    r2 = client.put(f"/api/tickets/{ticket['id']}/assign", json={"agent_id": agent2.id}, headers={**agent2_headers, "If-Match": f'"{version}"'})
    assert r2.status_code == 409
    body = r2.json()
    assert body["error"]["code"] == "version_conflict"
    assert body["error"]["details"]["current_version"] == version + 1
    assert r2.headers["ETag"] == f'"{version + 1}"'

    r = client.get(f"/api/tickets/{ticket['id']}", headers=agent1_headers)
    assert r.json()["assigned_to_id"] == agent1.id


def test_two_sessions_read_then_write(create_user, create_ticket, auth_headers, session_factory):
    """Both writers load version 0; only the first write may land."""
    submitter_headers, _ = auth_headers(role="end_user")
    agent = create_user(role="agent")
    ticket_id = create_ticket(submitter_headers)["id"]

    first, second = session_factory(), session_factory()
    try:
        # Held in locals so each identity map keeps its copy
        fresh = first.get(TicketModel, ticket_id)
        stale = second.get(TicketModel, ticket_id)
        assert fresh.version == 0
        assert stale.version == 0

        lifecycle.update_priority(first, ticket_id, "high", None)

        # No expected version given: the version read by this session (0) is used
        with pytest.raises(lifecycle.VersionConflict) as excinfo:
            lifecycle.assign(second, ticket_id, agent.id, None)
        assert excinfo.value.current_version == 1
        assert stale.version == 1
    finally:
        first.close()
        second.close()


def test_racing_writers_exactly_one_succeeds(create_user, create_ticket, auth_headers, session_factory):
    submitter_headers, _ = auth_headers(role="end_user")
    agents = [create_user(role="agent"), create_user(role="agent")]
    ticket_id = create_ticket(submitter_headers)["id"]

    barrier = threading.Barrier(len(agents))
    outcomes = [None] * len(agents)

    def worker(idx):
        session = session_factory()
        try:
            barrier.wait(timeout=5)
            lifecycle.assign(session, ticket_id, agents[idx].id, expected_version=0)
            outcomes[idx] = "ok"
        except lifecycle.VersionConflict:
            outcomes[idx] = "conflict"
        except Exception as exc:  # reported by the assertion below
            outcomes[idx] = repr(exc)
        finally:
            session.close()

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(len(agents))]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert sorted(outcomes) == ["conflict", "ok"]

    check = session_factory()
    try:
        ticket = check.get(TicketModel, ticket_id)
        assert ticket.version == 1
        winner = agents[outcomes.index("ok")]
        assert ticket.assigned_to_id == winner.id
    finally:
        check.close()


def test_close_after_concurrent_cancel_reports_invalid_state(client, auth_headers, create_ticket):
    submitter_headers, _ = auth_headers(role="end_user")
    agent_headers, _ = auth_headers(role="agent")
    ticket = create_ticket(submitter_headers)

    r = client.put(f"/api/tickets/{ticket['id']}/status", json={"status": "cancelled", "expected_version": 0}, headers=agent_headers)
    assert r.status_code == 200

    # Second client still believes the ticket is at version 0
    r = client.post(f"/api/tickets/{ticket['id']}/close", json={"resolution_notes": "Issue fixed on site.", "expected_version": 0}, headers=agent_headers)
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "invalid_state"
