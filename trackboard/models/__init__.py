# Models package: import all models here so Alembic can discover them.

from trackboard.models.user import User  # noqa: F401
from trackboard.models.board import Board, BoardMember, Backlog  # noqa: F401
from trackboard.models.sprint import Sprint  # noqa: F401
from trackboard.models.project import Project  # noqa: F401
from trackboard.models.ticket import Ticket, TicketAssignee, TicketReviewer  # noqa: F401
from trackboard.models.audit import AuditEvent  # noqa: F401
