"""
Typed exception hierarchy for the agri ledger kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers branch on the exception TYPE and its machine-readable ``code``, never
on message text:

    try:
        commands.post(settlement_id, posting_date=date(2024, 3, 31))
    except BusyError:
        retry_later()
    except AlreadyPostedError as e:
        respond(code=e.code, settlement_id=e.document_id)

Every exception:
  1. Has a class-level ``code`` attribute (API-safe identifier).
  2. Carries its context as attributes, not only in the message.
  3. Declares ``retryable``; only lock contention is retryable.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    AgriLedgerError (base)
    |
    +-- InvalidArgumentError
    |
    +-- NotFoundError
    |   +-- AccountNotFoundError
    |   +-- PartyNotFoundError
    |   +-- InvoiceNotFoundError
    |   +-- PaymentNotFoundError
    |   +-- ShareRuleNotFoundError
    |   +-- SettlementNotFoundError
    |   +-- ProjectNotFoundError
    |   +-- PostingGroupNotFoundError
    |   +-- PeriodNotFoundError
    |
    +-- ShareRuleError
    |   +-- InvalidShareRuleError  (alias: ShareRuleInvalidError)
    |   +-- ShareRuleLockedError
    |
    +-- StateTransitionError
    |   +-- AlreadyPostedError
    |   +-- NotPostedError
    |   +-- AlreadyReversedError
    |
    +-- PaymentApplicationError
    |
    +-- PeriodError
    |   +-- ClosedPeriodError
    |   +-- PeriodOverlapError
    |   +-- PeriodStatusError
    |
    +-- ConcurrencyError
    |   +-- BusyError
    |
    +-- LedgerIntegrityError
        +-- InconsistentLedgerError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Argument        | INVALID_ARGUMENT            | Malformed date, filter or amount
----------------|-----------------------------|-----------------------------------------
Lookup          | ACCOUNT_NOT_FOUND           | Account code/id unknown
                | PARTY_NOT_FOUND             | Party id unknown
                | INVOICE_NOT_FOUND           | Invoice id unknown
                | PAYMENT_NOT_FOUND           | Payment id unknown
                | SHARE_RULE_NOT_FOUND        | Share rule id unknown / none resolves
                | SETTLEMENT_NOT_FOUND        | Settlement id unknown
                | PROJECT_NOT_FOUND           | Project id unknown
                | POSTING_GROUP_NOT_FOUND     | Posting group id unknown
                | PERIOD_NOT_FOUND            | Period code unknown
----------------|-----------------------------|-----------------------------------------
Share rule      | INVALID_SHARE_RULE          | Proportions do not sum to 100
                | SHARE_RULE_LOCKED           | Rule used by a posted settlement
----------------|-----------------------------|-----------------------------------------
Lifecycle       | ALREADY_POSTED              | post on a non-DRAFT document
                | NOT_POSTED                  | reverse on a DRAFT document
                | ALREADY_REVERSED            | reverse on a REVERSED document
----------------|-----------------------------|-----------------------------------------
Payments        | PAYMENT_APPLICATION_INVALID | Over-application, currency mismatch
----------------|-----------------------------|-----------------------------------------
Periods         | CLOSED_PERIOD               | Post or reverse into a CLOSED period
                | PERIOD_OVERLAP              | New period overlaps an existing one
                | PERIOD_STATUS_CONFLICT      | Close a CLOSED / reopen an OPEN period
----------------|-----------------------------|-----------------------------------------
Concurrency     | BUSY                        | Lock timeout / stale version (retry)
----------------|-----------------------------|-----------------------------------------
Integrity       | LEDGER_INCONSISTENT         | Posting set does not net to zero
                | IMMUTABILITY_VIOLATION      | UPDATE/DELETE of a ledger record

LEDGER_INCONSISTENT is fatal: it implies a prior data-integrity bug. It is
logged at CRITICAL on the ``agri_kernel.alerts`` logger before it is raised,
and the enclosing transaction is never committed.
"""


class AgriLedgerError(Exception):
    """
    Base exception for all agri ledger errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "AGRI_LEDGER_ERROR"
    retryable: bool = False


# Argument validation


class InvalidArgumentError(AgriLedgerError):
    """A query parameter or command payload is malformed."""

    code: str = "INVALID_ARGUMENT"

    def __init__(self, argument: str, value: object, reason: str):
        self.argument = argument
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {argument} {value!r}: {reason}")


# Lookups


class NotFoundError(AgriLedgerError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"
    entity_type: str = "entity"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity_type} {entity_id} not found")


class AccountNotFoundError(NotFoundError):
    code: str = "ACCOUNT_NOT_FOUND"
    entity_type: str = "Account"


class PartyNotFoundError(NotFoundError):
    code: str = "PARTY_NOT_FOUND"
    entity_type: str = "Party"


class InvoiceNotFoundError(NotFoundError):
    code: str = "INVOICE_NOT_FOUND"
    entity_type: str = "Invoice"


class PaymentNotFoundError(NotFoundError):
    code: str = "PAYMENT_NOT_FOUND"
    entity_type: str = "Payment"


class ShareRuleNotFoundError(NotFoundError):
    code: str = "SHARE_RULE_NOT_FOUND"
    entity_type: str = "Share rule"


class SettlementNotFoundError(NotFoundError):
    code: str = "SETTLEMENT_NOT_FOUND"
    entity_type: str = "Settlement"


class ProjectNotFoundError(NotFoundError):
    code: str = "PROJECT_NOT_FOUND"
    entity_type: str = "Project"


class PostingGroupNotFoundError(NotFoundError):
    code: str = "POSTING_GROUP_NOT_FOUND"
    entity_type: str = "Posting group"


# Share rules


class ShareRuleError(AgriLedgerError):
    """Base exception for share rule errors."""

    code: str = "SHARE_RULE_ERROR"


class InvalidShareRuleError(ShareRuleError):
    """Share rule proportions do not sum to the full unit (100)."""

    code: str = "INVALID_SHARE_RULE"

    def __init__(self, share_rule_id: str | None, total: str, reason: str | None = None):
        self.share_rule_id = share_rule_id
        self.total = total
        self.reason = reason or f"percentages sum to {total}, expected 100"
        super().__init__(f"Share rule {share_rule_id} is invalid: {self.reason}")


# Both names are used by callers of the settlement engine.
ShareRuleInvalidError = InvalidShareRuleError


class ShareRuleLockedError(ShareRuleError):
    """Share rule has been used by a posted settlement and cannot change."""

    code: str = "SHARE_RULE_LOCKED"

    def __init__(self, share_rule_id: str, settlement_id: str):
        self.share_rule_id = share_rule_id
        self.settlement_id = settlement_id
        super().__init__(
            f"Share rule {share_rule_id} is used by posted settlement "
            f"{settlement_id} and cannot be modified"
        )


# Lifecycle transitions


class StateTransitionError(AgriLedgerError):
    """Base exception for illegal DRAFT/POSTED/REVERSED transitions."""

    code: str = "ILLEGAL_TRANSITION"

    def __init__(self, document_type: str, document_id: str, status: str, message: str):
        self.document_type = document_type
        self.document_id = document_id
        self.status = status
        super().__init__(message)


class AlreadyPostedError(StateTransitionError):
    """Document is not DRAFT and cannot be posted."""

    code: str = "ALREADY_POSTED"

    def __init__(self, document_type: str, document_id: str, status: str):
        super().__init__(
            document_type,
            document_id,
            status,
            f"Cannot post {document_type} {document_id}: status is {status}, not DRAFT",
        )


class NotPostedError(StateTransitionError):
    """Document is not POSTED and cannot be reversed."""

    code: str = "NOT_POSTED"

    def __init__(self, document_type: str, document_id: str, status: str):
        super().__init__(
            document_type,
            document_id,
            status,
            f"Cannot reverse {document_type} {document_id}: status is {status}, not POSTED",
        )


class AlreadyReversedError(StateTransitionError):
    """Document or posting group has already been reversed."""

    code: str = "ALREADY_REVERSED"

    def __init__(self, document_type: str, document_id: str, status: str = "REVERSED"):
        super().__init__(
            document_type,
            document_id,
            status,
            f"{document_type} {document_id} has already been reversed",
        )


# Payments


class PaymentApplicationError(AgriLedgerError):
    """A payment cannot be applied as requested."""

    code: str = "PAYMENT_APPLICATION_INVALID"

    def __init__(self, payment_id: str, reason: str, invoice_id: str | None = None):
        self.payment_id = payment_id
        self.invoice_id = invoice_id
        self.reason = reason
        super().__init__(f"Cannot apply payment {payment_id}: {reason}")


# Accounting periods


class PeriodError(AgriLedgerError):
    """Base exception for accounting period errors."""

    code: str = "PERIOD_ERROR"


class ClosedPeriodError(PeriodError):
    """Attempted to post into a CLOSED accounting period."""

    code: str = "CLOSED_PERIOD"

    def __init__(self, period_code: str, posting_date: str):
        self.period_code = period_code
        self.posting_date = posting_date
        super().__init__(
            f"Cannot post to closed period {period_code} (posting_date: {posting_date})"
        )


class PeriodNotFoundError(NotFoundError):
    code: str = "PERIOD_NOT_FOUND"
    entity_type: str = "Accounting period"


class PeriodOverlapError(PeriodError):
    """A new period's date range overlaps an existing period."""

    code: str = "PERIOD_OVERLAP"

    def __init__(self, period_code: str, existing_period_code: str):
        self.period_code = period_code
        self.existing_period_code = existing_period_code
        super().__init__(
            f"Period {period_code} overlaps existing period {existing_period_code}"
        )


class PeriodStatusError(PeriodError):
    """Close on a CLOSED period, or reopen on an OPEN one."""

    code: str = "PERIOD_STATUS_CONFLICT"

    def __init__(self, period_code: str, status: str):
        self.period_code = period_code
        self.status = status
        super().__init__(f"Period {period_code} is already {status}")


# Concurrency


class ConcurrencyError(AgriLedgerError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class BusyError(ConcurrencyError):
    """
    Another transition holds the document; the caller may retry.

    Raised on lock-acquisition timeout and on optimistic version conflicts.
    """

    code: str = "BUSY"
    retryable: bool = True

    def __init__(self, entity_type: str, entity_id: str, timeout_seconds: float | None = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.timeout_seconds = timeout_seconds
        detail = (
            f"lock not acquired within {timeout_seconds}s"
            if timeout_seconds is not None
            else "modified concurrently"
        )
        super().__init__(f"{entity_type} {entity_id} is busy: {detail}")


# Integrity


class LedgerIntegrityError(AgriLedgerError):
    """Base exception for ledger integrity failures."""

    code: str = "INTEGRITY_ERROR"


class InconsistentLedgerError(LedgerIntegrityError):
    """
    A posting set does not net to zero.

    Fatal: the write is halted and never committed.
    """

    code: str = "LEDGER_INCONSISTENT"

    def __init__(self, source_type: str, source_id: str, imbalances: dict[str, int]):
        self.source_type = source_type
        self.source_id = source_id
        self.imbalances = imbalances
        detail = ", ".join(f"{cur}={amt}" for cur, amt in sorted(imbalances.items()))
        super().__init__(
            f"Postings for {source_type} {source_id} do not net to zero ({detail})"
        )


class ImmutabilityViolationError(LedgerIntegrityError):
    """Attempted to modify or delete an append-only ledger record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
