"""Tests for the sprint state machine.

Covers:
- Numbering and auto_start
- Auto-migration of unfinished tickets on the next auto-started sprint
- start/complete transitions and their guards
- Completion policies: backlog, next-sprint, keep
- Update, delete and progress
"""

import pytest
from sqlalchemy.exc import IntegrityError

from trackboard.errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from trackboard.extensions import db
from trackboard.models.audit import AuditEvent
from trackboard.models.board import Board
from trackboard.models.sprint import Sprint
from trackboard.models.ticket import Ticket
from trackboard.services import board_service, sprint_service, ticket_service


# ─── Helpers ───────────────────────────────────────────────

def _sprint(seed_data, dates, name="Sprint", offset=0, auto_start=True, user="owner_id"):
    start, end = dates(offset)
    return sprint_service.create_sprint(
        seed_data["board_id"], seed_data[user], name, start, end,
        auto_start=auto_start,
    )


def _ticket(seed_data, title, sprint_id=None, status="TODO", story_points=None):
    return ticket_service.create_ticket(
        seed_data["board_id"], seed_data["owner_id"], title,
        sprint_id=sprint_id, status=status, story_points=story_points,
    )


def _active_count(board_id):
    return Sprint.query.filter_by(board_id=board_id, status=Sprint.ACTIVE).count()


# ─── Create ────────────────────────────────────────────────

class TestCreateSprint:

    def test_first_sprint_is_active_number_one(self, seed_data, dates):
        sprint = _sprint(seed_data, dates, "Sprint 1")
        assert sprint.number == 1
        assert sprint.status == Sprint.ACTIVE

    def test_planned_sprint_leaves_active_alone(self, seed_data, dates):
        first = _sprint(seed_data, dates, "Sprint 1")
        planned = _sprint(seed_data, dates, "Sprint 2", offset=14, auto_start=False)

        assert planned.number == 2
        assert planned.status == Sprint.PLANNED
        assert db.session.get(Sprint, first.id).status == Sprint.ACTIVE

    def test_auto_start_completes_previous_and_migrates(self, seed_data, dates):
        s1 = _sprint(seed_data, dates, "Sprint 1")
        todo = _ticket(seed_data, "Todo", sprint_id=s1.id)
        doing = _ticket(seed_data, "Doing", sprint_id=s1.id, status="IN_PROGRESS")
        done = _ticket(seed_data, "Done", sprint_id=s1.id, status="DONE")
        ids = (s1.id, todo.id, doing.id, done.id)

        s2 = _sprint(seed_data, dates, "Sprint 2", offset=14)
        db.session.expire_all()

        s1 = db.session.get(Sprint, ids[0])
        assert s1.status == Sprint.COMPLETED
        assert s2.status == Sprint.ACTIVE
        assert s2.number == 2
        assert db.session.get(Ticket, ids[1]).sprint_id == s2.id
        assert db.session.get(Ticket, ids[2]).sprint_id == s2.id
        assert db.session.get(Ticket, ids[3]).sprint_id == s1.id
        assert _active_count(seed_data["board_id"]) == 1

        completed = AuditEvent.query.filter_by(action="sprint.completed").one()
        assert completed.metadata_["moved"] == 2

    def test_numbers_are_per_board(self, seed_data, dates):
        _sprint(seed_data, dates)
        other = board_service.create_board(seed_data["owner_id"], "Other", "OTH")
        start, end = dates()
        sprint = sprint_service.create_sprint(other.id, seed_data["owner_id"], "O1", start, end)
        assert sprint.number == 1

    def test_end_must_follow_start(self, seed_data, dates):
        start, _ = dates()
        with pytest.raises(ValidationError, match="End date"):
            sprint_service.create_sprint(
                seed_data["board_id"], seed_data["owner_id"], "Bad", start, start
            )

    def test_accepts_iso_strings(self, seed_data):
        sprint = sprint_service.create_sprint(
            seed_data["board_id"], seed_data["owner_id"], "Strings",
            "2026-03-02T09:00:00Z", "2026-03-16T09:00:00Z",
        )
        assert sprint.number == 1

    def test_name_and_goal_bounds(self, seed_data, dates):
        start, end = dates()
        with pytest.raises(ValidationError, match="Sprint name"):
            sprint_service.create_sprint(
                seed_data["board_id"], seed_data["owner_id"], "", start, end
            )
        with pytest.raises(ValidationError, match="Goal"):
            sprint_service.create_sprint(
                seed_data["board_id"], seed_data["owner_id"], "S", start, end,
                goal="g" * 501,
            )

    def test_non_member_forbidden(self, seed_data, dates):
        with pytest.raises(ForbiddenError):
            _sprint(seed_data, dates, user="outsider_id")

    def test_min_role_enforced(self, seed_data, dates):
        start, end = dates()
        with pytest.raises(ForbiddenError):
            sprint_service.create_sprint(
                seed_data["board_id"], seed_data["viewer_id"], "S", start, end,
                min_role="MEMBER",
            )

    def test_missing_board(self, seed_data, dates):
        start, end = dates()
        with pytest.raises(NotFoundError):
            sprint_service.create_sprint("nope", seed_data["owner_id"], "S", start, end)

    def test_auto_start_string_rejected(self, seed_data, dates):
        with pytest.raises(ValidationError, match="auto_start"):
            _sprint(seed_data, dates, auto_start="false")
        assert Sprint.query.count() == 0


# ─── Start ─────────────────────────────────────────────────

class TestStartSprint:

    def test_start_planned(self, seed_data, dates):
        planned = _sprint(seed_data, dates, auto_start=False)
        sprint = sprint_service.start_sprint(planned.id, seed_data["member_id"])
        assert sprint.status == Sprint.ACTIVE

    def test_conflict_when_another_is_active(self, seed_data, dates):
        _sprint(seed_data, dates, "Active")
        planned = _sprint(seed_data, dates, "Later", offset=14, auto_start=False)
        with pytest.raises(ConflictError, match="already active"):
            sprint_service.start_sprint(planned.id, seed_data["owner_id"])
        assert db.session.get(Sprint, planned.id).status == Sprint.PLANNED

    def test_only_planned_can_start(self, seed_data, dates):
        active = _sprint(seed_data, dates)
        with pytest.raises(InvalidStateError):
            sprint_service.start_sprint(active.id, seed_data["owner_id"])

    def test_store_rejects_second_active(self, seed_data, dates):
        _sprint(seed_data, dates, "Active")
        planned = _sprint(seed_data, dates, "Later", offset=14, auto_start=False)
        db.session.get(Sprint, planned.id).status = Sprint.ACTIVE
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()
        assert _active_count(seed_data["board_id"]) == 1


# ─── Complete ──────────────────────────────────────────────

class TestCompleteSprint:

    def test_backlog_policy(self, seed_data, dates):
        sprint = _sprint(seed_data, dates)
        todo = _ticket(seed_data, "Todo", sprint_id=sprint.id)
        done = _ticket(seed_data, "Done", sprint_id=sprint.id, status="DONE")
        todo_id, done_id, sprint_id = todo.id, done.id, sprint.id

        completed, moved = sprint_service.complete_sprint(sprint_id, seed_data["owner_id"])
        db.session.expire_all()

        assert moved == 1
        assert completed.status == Sprint.COMPLETED
        todo = db.session.get(Ticket, todo_id)
        assert todo.sprint_id is None
        assert todo.backlog_id == seed_data["backlog_id"]
        done = db.session.get(Ticket, done_id)
        assert done.sprint_id == sprint_id
        assert done.backlog_id is None

    def test_next_sprint_policy(self, seed_data, dates):
        sprint = _sprint(seed_data, dates)
        target = _sprint(seed_data, dates, "Next", offset=14, auto_start=False)
        todo = _ticket(seed_data, "Todo", sprint_id=sprint.id)
        todo_id, target_id = todo.id, target.id

        _, moved = sprint_service.complete_sprint(
            sprint.id, seed_data["owner_id"], policy="next-sprint",
            target_sprint_id=target_id,
        )
        db.session.expire_all()
        assert moved == 1
        assert db.session.get(Ticket, todo_id).sprint_id == target_id

    def test_next_sprint_requires_target(self, seed_data, dates):
        sprint = _sprint(seed_data, dates)
        with pytest.raises(ValidationError, match="target_sprint_id"):
            sprint_service.complete_sprint(
                sprint.id, seed_data["owner_id"], policy="next-sprint"
            )

    def test_next_sprint_rejects_completed_target(self, seed_data, dates):
        first = _sprint(seed_data, dates, "First")
        first_id = first.id
        second = _sprint(seed_data, dates, "Second", offset=14)  # completes first
        with pytest.raises(InvalidStateError, match="Target"):
            sprint_service.complete_sprint(
                second.id, seed_data["owner_id"], policy="next-sprint",
                target_sprint_id=first_id,
            )
        assert db.session.get(Sprint, second.id).status == Sprint.ACTIVE

    def test_next_sprint_rejects_other_board(self, seed_data, dates):
        sprint = _sprint(seed_data, dates)
        other = board_service.create_board(seed_data["owner_id"], "Other", "OTH")
        start, end = dates()
        foreign = sprint_service.create_sprint(
            other.id, seed_data["owner_id"], "Foreign", start, end, auto_start=False
        )
        with pytest.raises(ValidationError, match="different board"):
            sprint_service.complete_sprint(
                sprint.id, seed_data["owner_id"], policy="next-sprint",
                target_sprint_id=foreign.id,
            )

    def test_keep_policy(self, seed_data, dates):
        sprint = _sprint(seed_data, dates)
        todo = _ticket(seed_data, "Todo", sprint_id=sprint.id)
        todo_id, sprint_id = todo.id, sprint.id

        _, moved = sprint_service.complete_sprint(sprint_id, seed_data["owner_id"], policy="keep")
        db.session.expire_all()
        assert moved == 0
        assert db.session.get(Ticket, todo_id).sprint_id == sprint_id

    def test_invalid_policy(self, seed_data, dates):
        sprint = _sprint(seed_data, dates)
        with pytest.raises(ValidationError, match="policy"):
            sprint_service.complete_sprint(sprint.id, seed_data["owner_id"], policy="archive")

    def test_planned_cannot_complete(self, seed_data, dates):
        planned = _sprint(seed_data, dates, auto_start=False)
        with pytest.raises(InvalidStateError):
            sprint_service.complete_sprint(planned.id, seed_data["owner_id"])

    def test_completed_is_terminal(self, seed_data, dates):
        sprint = _sprint(seed_data, dates)
        sprint_service.complete_sprint(sprint.id, seed_data["owner_id"])
        with pytest.raises(InvalidStateError):
            sprint_service.complete_sprint(sprint.id, seed_data["owner_id"])
        with pytest.raises(InvalidStateError):
            sprint_service.start_sprint(sprint.id, seed_data["owner_id"])


# ─── Update / delete / reads ───────────────────────────────

class TestUpdateAndDelete:

    def test_update_name_and_goal(self, seed_data, dates):
        sprint = _sprint(seed_data, dates)
        sprint = sprint_service.update_sprint(
            sprint.id, seed_data["owner_id"], name="Renamed", goal="Ship it"
        )
        assert sprint.name == "Renamed"
        assert sprint.goal == "Ship it"

    def test_update_end_before_stored_start(self, seed_data, dates):
        sprint = _sprint(seed_data, dates)
        with pytest.raises(ValidationError, match="End date"):
            sprint_service.update_sprint(
                sprint.id, seed_data["owner_id"], end_date="2025-01-01T00:00:00Z"
            )

    def test_update_rejects_unknown_field(self, seed_data, dates):
        sprint = _sprint(seed_data, dates)
        with pytest.raises(ValidationError, match="status"):
            sprint_service.update_sprint(sprint.id, seed_data["owner_id"], status="COMPLETED")

    def test_delete_returns_tickets_to_backlog(self, seed_data, dates):
        sprint = _sprint(seed_data, dates)
        done = _ticket(seed_data, "Done", sprint_id=sprint.id, status="DONE")
        todo = _ticket(seed_data, "Todo", sprint_id=sprint.id)
        sprint_id, ids = sprint.id, (done.id, todo.id)

        moved = sprint_service.delete_sprint(sprint_id, seed_data["owner_id"])
        db.session.expire_all()

        assert moved == 2
        assert db.session.get(Sprint, sprint_id) is None
        for ticket_id in ids:
            ticket = db.session.get(Ticket, ticket_id)
            assert ticket.sprint_id is None
            assert ticket.backlog_id == seed_data["backlog_id"]

    def test_deleted_number_is_not_reissued(self, seed_data, dates):
        _sprint(seed_data, dates, "One")
        second = _sprint(seed_data, dates, "Two", offset=14, auto_start=False)
        second_id, second_number = second.id, second.number
        sprint_service.delete_sprint(second_id, seed_data["owner_id"])

        third = _sprint(seed_data, dates, "Three", offset=28, auto_start=False)

        assert second_number == 2
        assert third.number == 3
        db.session.expire_all()
        assert db.session.get(Board, seed_data["board_id"]).sprint_counter == 3


class TestReads:

    def test_list_newest_first_and_current(self, seed_data, dates):
        _sprint(seed_data, dates, "One")
        two = _sprint(seed_data, dates, "Two", offset=14)
        _sprint(seed_data, dates, "Three", offset=28, auto_start=False)

        numbers = [s.number for s in sprint_service.list_sprints(
            seed_data["board_id"], seed_data["viewer_id"]
        )]
        assert numbers == [3, 2, 1]
        current = sprint_service.get_current_sprint(seed_data["board_id"], seed_data["viewer_id"])
        assert current.id == two.id

    def test_no_current_sprint(self, seed_data):
        assert sprint_service.get_current_sprint(
            seed_data["board_id"], seed_data["owner_id"]
        ) is None

    def test_reads_require_membership(self, seed_data, dates):
        sprint = _sprint(seed_data, dates)
        with pytest.raises(ForbiddenError):
            sprint_service.get_sprint(sprint.id, seed_data["outsider_id"])
        with pytest.raises(ForbiddenError):
            sprint_service.list_sprints(seed_data["board_id"], seed_data["outsider_id"])

    def test_progress(self, seed_data, dates):
        sprint = _sprint(seed_data, dates)
        _ticket(seed_data, "A", sprint_id=sprint.id, status="DONE", story_points=5)
        _ticket(seed_data, "B", sprint_id=sprint.id, status="IN_PROGRESS", story_points=3)
        _ticket(seed_data, "C", sprint_id=sprint.id, story_points=2)
        _ticket(seed_data, "D", sprint_id=sprint.id, status="DONE")

        progress = sprint_service.get_sprint_progress(sprint.id, seed_data["viewer_id"])
        assert progress["total"] == 4
        assert progress["completed"] == 2
        assert progress["in_progress"] == 1
        assert progress["todo"] == 1
        assert progress["total_points"] == 10
        assert progress["completed_points"] == 5
        assert progress["completion_percentage"] == 50
        assert progress["points_completion_percentage"] == 50

    def test_progress_empty_sprint(self, seed_data, dates):
        sprint = _sprint(seed_data, dates)
        progress = sprint_service.get_sprint_progress(sprint.id, seed_data["owner_id"])
        assert progress["total"] == 0
        assert progress["completion_percentage"] == 0
