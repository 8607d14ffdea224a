"""Tests for the JSON API: identity header, role gating and error rendering."""

import pytest
from flask import g

from trackboard.extensions import db
from trackboard.models.sprint import Sprint
from trackboard.models.ticket import Ticket


# ─── Helpers ───────────────────────────────────────────────

def _call(client, method, url, user_id=None, json=None):
    """Issue a request as ``user_id`` via the trusted identity header."""
    # The test app context outlives each request; drop the cached user.
    g.pop("_login_user", None)
    headers = {"X-User-Id": user_id} if user_id else {}
    return client.open(url, method=method, headers=headers, json=json)


SPRINT_WINDOW = {
    "start_date": "2026-01-05T09:00:00Z",
    "end_date": "2026-01-19T09:00:00Z",
}


# ─── Identity ──────────────────────────────────────────────

class TestIdentity:

    def test_missing_header_is_401(self, client, seed_data):
        resp = _call(client, "GET", "/api/boards")
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "unauthorized"

    def test_unknown_user_is_401(self, client, seed_data):
        resp = _call(client, "GET", "/api/boards", user_id="ghost")
        assert resp.status_code == 401

    def test_lists_own_boards(self, client, seed_data):
        resp = _call(client, "GET", "/api/boards", user_id=seed_data["viewer_id"])
        assert resp.status_code == 200
        assert [b["prefix"] for b in resp.get_json()] == ["SENS"]

        resp = _call(client, "GET", "/api/boards", user_id=seed_data["outsider_id"])
        assert resp.get_json() == []

    def test_healthz(self, client):
        assert client.get("/healthz").get_json() == {"status": "ok"}


# ─── Boards ────────────────────────────────────────────────

class TestBoardsApi:

    def test_create_board(self, client, seed_data):
        resp = _call(client, "POST", "/api/boards", user_id=seed_data["member_id"], json={
            "name": "Platform", "prefix": "PLAT",
        })
        assert resp.status_code == 201
        data = resp.get_json()
        assert data["prefix"] == "PLAT"
        assert data["ticket_counter"] == 0
        assert data["backlog_id"]

    def test_validation_error_is_400(self, client, seed_data):
        resp = _call(client, "POST", "/api/boards", user_id=seed_data["owner_id"], json={
            "name": "Bad", "prefix": "bad",
        })
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "validation_error"

    def test_duplicate_prefix_is_409(self, client, seed_data):
        resp = _call(client, "POST", "/api/boards", user_id=seed_data["owner_id"], json={
            "name": "Again", "prefix": "SENS",
        })
        assert resp.status_code == 409
        assert resp.get_json()["error"] == "conflict"

    def test_non_member_gets_404_for_board(self, client, seed_data):
        url = f"/api/boards/{seed_data['board_id']}"
        assert _call(client, "GET", url, user_id=seed_data["outsider_id"]).status_code == 404
        assert _call(client, "GET", url, user_id=seed_data["viewer_id"]).status_code == 200

    def test_update_requires_admin(self, client, seed_data):
        url = f"/api/boards/{seed_data['board_id']}"
        resp = _call(client, "PUT", url, user_id=seed_data["member_id"], json={"name": "X"})
        assert resp.status_code == 403
        resp = _call(client, "PUT", url, user_id=seed_data["admin_id"], json={"name": "X"})
        assert resp.status_code == 200
        assert resp.get_json()["name"] == "X"

    def test_update_rejects_unknown_fields(self, client, seed_data):
        url = f"/api/boards/{seed_data['board_id']}"
        resp = _call(client, "PUT", url, user_id=seed_data["owner_id"], json={"user_id": "x"})
        assert resp.status_code == 400

    def test_members_and_activity(self, client, seed_data):
        base = f"/api/boards/{seed_data['board_id']}"
        resp = _call(client, "POST", f"{base}/members", user_id=seed_data["admin_id"], json={
            "user_id": seed_data["outsider_id"], "role": "VIEWER",
        })
        assert resp.status_code == 201

        members = _call(client, "GET", f"{base}/members", user_id=seed_data["outsider_id"])
        assert members.status_code == 200
        assert len(members.get_json()) == 5

        assert _call(client, "GET", f"{base}/activity",
                     user_id=seed_data["member_id"]).status_code == 403
        activity = _call(client, "GET", f"{base}/activity", user_id=seed_data["admin_id"])
        actions = [e["action"] for e in activity.get_json()]
        assert "board.member_added" in actions

    def test_invite_guest(self, client, seed_data):
        url = f"/api/boards/{seed_data['board_id']}/invitations"
        resp = _call(client, "POST", url, user_id=seed_data["admin_id"], json={
            "email": " Guest@Partner.dev ", "role": "MEMBER",
        })
        assert resp.status_code == 201
        body = resp.get_json()
        assert (body["email"], body["role"], body["created_user"]) == (
            "guest@partner.dev", "MEMBER", True,
        )

        again = _call(client, "POST", url, user_id=seed_data["admin_id"],
                      json={"email": "guest@partner.dev"})
        assert again.status_code == 409
        assert _call(client, "POST", url, user_id=seed_data["member_id"],
                     json={"email": "x@partner.dev"}).status_code == 403
        assert _call(client, "POST", url, user_id=seed_data["admin_id"],
                     json={"email": "y@partner.dev", "role": "OWNER"}).status_code == 400

    def test_ancestors_and_hierarchy(self, client, seed_data):
        resp = _call(client, "POST", "/api/boards", user_id=seed_data["owner_id"], json={
            "name": "Child", "prefix": "CHLD", "parent_board_id": seed_data["board_id"],
        })
        child_id = resp.get_json()["id"]

        ancestors = _call(client, "GET", f"/api/boards/{child_id}/ancestors",
                          user_id=seed_data["owner_id"])
        assert [b["prefix"] for b in ancestors.get_json()] == ["SENS"]

        hierarchy = _call(client, "GET", f"/api/boards/{seed_data['board_id']}/hierarchy",
                          user_id=seed_data["owner_id"]).get_json()
        assert hierarchy["parent"] is None
        assert [b["prefix"] for b in hierarchy["children"]] == ["CHLD"]

    def test_delete_board(self, client, seed_data):
        url = f"/api/boards/{seed_data['board_id']}"
        assert _call(client, "DELETE", url, user_id=seed_data["admin_id"]).status_code == 403
        assert _call(client, "DELETE", url, user_id=seed_data["owner_id"]).status_code == 200
        assert _call(client, "GET", url, user_id=seed_data["owner_id"]).status_code == 404


# ─── Sprints and tickets ───────────────────────────────────

class TestSprintFlow:

    def _create_sprint(self, client, seed_data, name, **extra):
        body = {"name": name, **SPRINT_WINDOW, **extra}
        return _call(client, "POST", f"/api/boards/{seed_data['board_id']}/sprints",
                     user_id=seed_data["member_id"], json=body)

    def test_viewer_cannot_mutate(self, client, seed_data):
        resp = _call(client, "POST", f"/api/boards/{seed_data['board_id']}/sprints",
                     user_id=seed_data["viewer_id"], json={"name": "S", **SPRINT_WINDOW})
        assert resp.status_code == 403
        resp = _call(client, "POST", f"/api/boards/{seed_data['board_id']}/tickets",
                     user_id=seed_data["viewer_id"], json={"title": "T"})
        assert resp.status_code == 403
        assert Ticket.query.count() == 0

    def test_auto_migration_end_to_end(self, client, seed_data):
        s1 = self._create_sprint(client, seed_data, "Sprint 1").get_json()
        assert (s1["number"], s1["status"]) == (1, "ACTIVE")

        tickets_url = f"/api/boards/{seed_data['board_id']}/tickets"
        setup = _call(client, "POST", tickets_url, user_id=seed_data["member_id"], json={
            "title": "Setup", "sprint_id": s1["id"],
        }).get_json()
        assert setup["key"] == "SENS-1"
        done = _call(client, "POST", tickets_url, user_id=seed_data["member_id"], json={
            "title": "Shipped", "sprint_id": s1["id"], "status": "DONE",
        }).get_json()

        sub = _call(client, "POST", f"/api/tickets/{setup['id']}/sub-tickets",
                    user_id=seed_data["member_id"], json={"title": "Wiring"})
        assert sub.status_code == 201
        assert sub.get_json()["key"] == "SENS-1.1"

        s2 = self._create_sprint(client, seed_data, "Sprint 2").get_json()
        assert (s2["number"], s2["status"]) == (2, "ACTIVE")

        db.session.expire_all()
        assert db.session.get(Sprint, s1["id"]).status == "COMPLETED"
        assert db.session.get(Ticket, setup["id"]).sprint_id == s2["id"]
        assert db.session.get(Ticket, done["id"]).sprint_id == s1["id"]

        current = _call(client, "GET", f"/api/boards/{seed_data['board_id']}/sprints/current",
                        user_id=seed_data["viewer_id"]).get_json()
        assert current["id"] == s2["id"]

    @pytest.mark.parametrize("value", ["false", 0, None])
    def test_auto_start_must_be_boolean(self, client, seed_data, value):
        resp = self._create_sprint(client, seed_data, "S", auto_start=value)
        assert resp.status_code == 400
        assert "auto_start" in resp.get_json()["message"]
        assert Sprint.query.count() == 0

    def test_start_conflict_and_complete(self, client, seed_data):
        self._create_sprint(client, seed_data, "Active")
        planned = self._create_sprint(client, seed_data, "Planned", auto_start=False).get_json()

        resp = _call(client, "POST", f"/api/sprints/{planned['id']}/start",
                     user_id=seed_data["member_id"])
        assert resp.status_code == 409

        resp = _call(client, "POST", f"/api/sprints/{planned['id']}/complete",
                     user_id=seed_data["member_id"], json={"policy": "backlog"})
        assert resp.status_code == 422
        assert resp.get_json()["error"] == "invalid_state"

    def test_complete_reports_moved(self, client, seed_data):
        sprint = self._create_sprint(client, seed_data, "S").get_json()
        _call(client, "POST", f"/api/boards/{seed_data['board_id']}/tickets",
              user_id=seed_data["member_id"], json={"title": "Left", "sprint_id": sprint["id"]})

        resp = _call(client, "POST", f"/api/sprints/{sprint['id']}/complete",
                     user_id=seed_data["member_id"], json={})
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["moved"] == 1
        assert body["sprint"]["status"] == "COMPLETED"

        backlog = _call(client, "GET", f"/api/backlogs/{seed_data['backlog_id']}/tickets",
                        user_id=seed_data["viewer_id"]).get_json()
        assert [t["title"] for t in backlog] == ["Left"]


class TestTicketApi:

    def _create(self, client, seed_data, **body):
        return _call(client, "POST", f"/api/boards/{seed_data['board_id']}/tickets",
                     user_id=seed_data["member_id"], json={"title": "Ticket", **body})

    def test_both_containers_is_400(self, client, seed_data):
        sprint = _call(client, "POST", f"/api/boards/{seed_data['board_id']}/sprints",
                       user_id=seed_data["member_id"],
                       json={"name": "S", **SPRINT_WINDOW}).get_json()
        resp = self._create(client, seed_data, sprint_id=sprint["id"],
                            backlog_id=seed_data["backlog_id"])
        assert resp.status_code == 400

    def test_people_sets(self, client, seed_data):
        ticket = self._create(client, seed_data, assignee_ids=[seed_data["member_id"]],
                              reviewer_ids=[seed_data["admin_id"]], weight=5).get_json()
        assert ticket["assignee_ids"] == [seed_data["member_id"]]
        assert ticket["reviewer_ids"] == [seed_data["admin_id"]]
        assert (ticket["percentage"], ticket["weight"]) == (0, 5)

        resp = _call(client, "PUT", f"/api/tickets/{ticket['id']}",
                     user_id=seed_data["member_id"],
                     json={"assignee_ids": [seed_data["outsider_id"]]})
        assert resp.status_code == 400
        resp = _call(client, "PUT", f"/api/tickets/{ticket['id']}",
                     user_id=seed_data["member_id"], json={"assignee_ids": []})
        assert resp.get_json()["assignee_ids"] == []
        assert resp.get_json()["reviewer_ids"] == [seed_data["admin_id"]]

    def test_get_ticket_with_children(self, client, seed_data):
        parent = self._create(client, seed_data).get_json()
        _call(client, "POST", f"/api/tickets/{parent['id']}/sub-tickets",
              user_id=seed_data["member_id"], json={"title": "Child"})

        body = _call(client, "GET", f"/api/tickets/{parent['id']}",
                     user_id=seed_data["viewer_id"]).get_json()
        assert body["parent"] is None
        assert [c["key"] for c in body["sub_tickets"]] == ["SENS-1.1"]

    def test_update_move_order_delete(self, client, seed_data):
        ticket = self._create(client, seed_data).get_json()
        url = f"/api/tickets/{ticket['id']}"
        member = seed_data["member_id"]

        resp = _call(client, "PUT", url, user_id=member, json={"status": "IN_PROGRESS"})
        assert resp.get_json()["status"] == "IN_PROGRESS"

        resp = _call(client, "PUT", url, user_id=member, json={"min_role": "VIEWER"})
        assert resp.status_code == 400

        resp = _call(client, "POST", f"{url}/move", user_id=member, json={})
        assert resp.status_code == 400

        resp = _call(client, "PUT", f"{url}/order", user_id=member, json={"order": 7})
        assert resp.get_json()["order"] == 7

        resp = _call(client, "DELETE", url, user_id=member)
        assert resp.get_json() == {"success": True, "deleted": 1}
        assert _call(client, "GET", url, user_id=member).status_code == 404

    @pytest.mark.parametrize("query,expected", [
        ("?include_child_boards=true", ["Mine", "Theirs"]),
        ("", ["Mine"]),
    ])
    def test_board_view(self, client, seed_data, query, expected):
        child = _call(client, "POST", "/api/boards", user_id=seed_data["owner_id"], json={
            "name": "Child", "prefix": "CHLD", "parent_board_id": seed_data["board_id"],
        }).get_json()
        self._create(client, seed_data, title="Mine")
        _call(client, "POST", f"/api/boards/{child['id']}/tickets",
              user_id=seed_data["owner_id"], json={"title": "Theirs"})

        resp = _call(client, "GET", f"/api/boards/{seed_data['board_id']}/tickets{query}",
                     user_id=seed_data["viewer_id"])
        assert sorted(t["title"] for t in resp.get_json()) == expected
