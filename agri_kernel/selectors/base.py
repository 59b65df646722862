"""
Module: agri_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.
    Selectors form the query side of the kernel: ageing inputs, account
    balances, cashbook rows.
Architecture position: Kernel > Selectors.  May import from db/ and
    models/.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only access: selectors MUST NOT call session.add(),
      session.delete(), session.commit(), or session.flush().
    - DTO return convention: selectors return frozen dataclasses, not ORM
      instances.
    - All figures are derived from ledger postings and documents; there
      are no stored balances.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only
        queries, and return DTOs.  They MUST NOT mutate any data.
    """

    def __init__(self, session: Session):
        self.session = session
