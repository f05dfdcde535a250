"""Model exports for SQLAlchemy/SQLModel metadata discovery."""

from kanban_crm.models.board_columns import BoardColumn
from kanban_crm.models.boards import Board
from kanban_crm.models.card_assignees import CardAssignee
from kanban_crm.models.cards import Card
from kanban_crm.models.notifications import Notification
from kanban_crm.models.organization_members import OrganizationMember
from kanban_crm.models.organizations import Organization
from kanban_crm.models.profiles import Profile

__all__ = [
    "Board",
    "BoardColumn",
    "Card",
    "CardAssignee",
    "Notification",
    "Organization",
    "OrganizationMember",
    "Profile",
]
