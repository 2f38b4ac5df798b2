from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field

from src.models.enums import TicketCategory
from src.models.ticket import Ticket


class StaffScope(StrEnum):
    """Capability claim carried by a staff token."""

    __slots__ = ()

    ALL_AGENCIES = "all-agencies"
    AGENCY = "agency"


class StaffPrincipal(BaseModel):
    """Authenticated agency staff member, decoded from a signed token."""

    model_config = {"frozen": True}

    agency_id: str
    agency_name: str
    categories: list[TicketCategory] = Field(default_factory=list)
    scope: StaffScope = StaffScope.AGENCY

    @property
    def is_admin(self) -> bool:
        return self.scope is StaffScope.ALL_AGENCIES

    @property
    def agency_filter(self) -> str | None:
        """Agency to scope queries by; *None* means every agency."""
        return None if self.is_admin else self.agency_id

    def can_access(self, ticket: Ticket) -> bool:
        return self.is_admin or self.agency_id in ticket.assigned_dinas
