"""
Module: agri_kernel.selectors.receivable_selector
Responsibility: Read the open receivables that feed the ageing classifier.
Architecture position: Kernel > Selectors.  Returns agri_engines OpenItem
    DTOs; performs no classification itself.

Invariants enforced:
    - Only POSTED invoices are candidates; DRAFT and REVERSED never are.
    - open = amount - sum(ACTIVE applications with applied_on <= cutoff),
      computed in SQL in integer minor units.
    - Invoices posted after the cutoff are still returned; the classifier
      clamps their negative age into 0-30.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import func, select

from agri_engines.ageing import OpenItem
from agri_kernel.models.invoice import (
    ApplicationStatus,
    DocumentStatus,
    Invoice,
    PaymentApplication,
)
from agri_kernel.models.party import Party
from agri_kernel.selectors.base import BaseSelector


class ReceivableSelector(BaseSelector):
    """Open receivables as of a cutoff."""

    def open_items(
        self,
        cutoff: date,
        *,
        buyer_party_id: UUID | None = None,
        project_id: UUID | None = None,
        currency: str | None = None,
    ) -> list[OpenItem]:
        """
        POSTED invoices with a positive open balance as of ``cutoff``.

        Postconditions:
            - Ordered by buyer name, posting date, invoice number.
            - Every returned item has open_minor > 0.
        """
        applied = (
            select(
                PaymentApplication.invoice_id.label("invoice_id"),
                func.sum(PaymentApplication.amount_minor).label("applied_minor"),
            )
            .where(
                PaymentApplication.status == ApplicationStatus.ACTIVE.value,
                PaymentApplication.applied_on <= cutoff,
            )
            .group_by(PaymentApplication.invoice_id)
            .subquery()
        )
        applied_minor = func.coalesce(applied.c.applied_minor, 0)

        query = (
            select(Invoice, Party.name.label("buyer_name"), applied_minor.label("applied_minor"))
            .join(Party, Invoice.buyer_party_id == Party.id)
            .outerjoin(applied, applied.c.invoice_id == Invoice.id)
            .where(
                Invoice.status == DocumentStatus.POSTED.value,
                Invoice.amount_minor - applied_minor > 0,
            )
            .order_by(Party.name, Invoice.posting_date, Invoice.invoice_no)
        )

        if buyer_party_id is not None:
            query = query.where(Invoice.buyer_party_id == buyer_party_id)
        if project_id is not None:
            query = query.where(Invoice.project_id == project_id)
        if currency is not None:
            query = query.where(Invoice.currency == currency)

        return [
            OpenItem(
                document_id=invoice.id,
                buyer_party_id=invoice.buyer_party_id,
                buyer_name=buyer_name,
                posting_date=invoice.posting_date,
                open_minor=invoice.amount_minor - int(applied_total),
                currency=invoice.currency,
                reference=invoice.invoice_no,
                due_date=invoice.due_date,
                amount_minor=invoice.amount_minor,
            )
            for invoice, buyer_name, applied_total in self.session.execute(query).all()
        ]

