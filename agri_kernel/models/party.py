"""
Module: agri_kernel.models.party
Responsibility: Parties (buyers, landlords, growers, partners) and the
    projects that documents may be scoped to.
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from enum import Enum

from sqlalchemy import Boolean, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from agri_kernel.db.base import TrackedBase


class PartyType(str, Enum):
    """Role a party plays towards the farm."""

    BUYER = "BUYER"
    LANDLORD = "LANDLORD"
    GROWER = "GROWER"
    PARTNER = "PARTNER"
    VENDOR = "VENDOR"
    OTHER = "OTHER"


class Party(TrackedBase):
    """A counterparty: invoices are billed to buyers, settlements pay recipients."""

    __tablename__ = "parties"

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    party_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=PartyType.OTHER.value,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Party {self.name} ({self.party_type})>"


class Project(TrackedBase):
    """A crop cycle or field project used to scope documents and reports."""

    __tablename__ = "projects"

    __table_args__ = (UniqueConstraint("code", name="uq_project_code"),)

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    def __repr__(self) -> str:
        return f"<Project {self.code}>"
