"""
Typed Exception Hierarchy for the Asset Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (HTTP layers, batch importers, tests) must react to failures by
type, never by parsing messages.  Every error therefore:
  1. Has a TYPED exception class (catch by type, not message)
  2. Has a CODE attribute (machine-readable, API-safe)
  3. Carries structured DATA (serials, statuses, shortfall lines)

Example - RIGHT way:
    try:
        workflow.receive_order(actor, order_id)
    except InvalidOrderStatusError as e:
        api_response(409, code=e.code, status=e.current_status)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    AssetKernelError (base)
    |
    +-- ValidationError                      surfaced, never retried
    |   +-- InvalidBranchPairError
    |   +-- InvalidPartLineError
    |   +-- MissingResolutionError
    |   +-- RejectionReasonRequiredError
    |   +-- InvalidPaymentAmountError
    |   +-- PaymentExceedsBalanceError
    |   +-- AssetKindMismatchError
    |   +-- InvalidOrderItemsError
    |   +-- ImportRowError
    |
    +-- NotFoundError                        absent or outside the actor's scope
    |   +-- BranchNotFoundError
    |   +-- AssetNotFoundError
    |   +-- OrderNotFoundError
    |   +-- AssignmentNotFoundError
    |   +-- ApprovalNotFoundError
    |   +-- DebtNotFoundError
    |   +-- PartNotFoundError
    |   +-- TicketNotFoundError
    |
    +-- ConflictError                        precondition violated
    |   +-- AssetUnavailableError
    |   +-- DuplicateSerialError
    |   +-- InvalidOrderStatusError
    |   +-- InvalidMachineTransitionError
    |   +-- InvalidAssignmentStatusError
    |   +-- DuplicateAssignmentError
    |   +-- ApprovalAlreadyRespondedError
    |   +-- ApprovalPendingError
    |   +-- InsufficientStockError
    |   +-- ConcurrentModificationError
    |
    +-- ForbiddenError                       no details about the resource
    |
    +-- ImmutabilityViolationError           append-only row touched
    |
    +-- AuditChainBrokenError                hash chain mismatch

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Family      | Code                         | When Raised
------------|------------------------------|-----------------------------------
Validation  | INVALID_BRANCH_PAIR          | Source/destination incompatible
            | INVALID_PART_LINE            | Quantity/total malformed
            | MISSING_RESOLUTION           | READY_FOR_RETURN without resolution
            | REJECTION_REASON_REQUIRED    | Approval rejected without reason
            | INVALID_PAYMENT_AMOUNT       | Payment <= 0
            | PAYMENT_EXCEEDS_BALANCE      | Payment > remaining amount
            | ASSET_KIND_MISMATCH          | SIM on a MACHINE order, etc.
            | INVALID_ORDER_ITEMS          | Empty or duplicated order lines
            | IMPORT_ROW_INVALID           | Bulk import row rejected
------------|------------------------------|-----------------------------------
NotFound    | *_NOT_FOUND                  | Entity absent or not visible
------------|------------------------------|-----------------------------------
Conflict    | ASSET_UNAVAILABLE            | In transit, sold, or in repair
            | DUPLICATE_SERIAL             | Serial already registered
            | INVALID_ORDER_STATUS         | Order not in required status
            | INVALID_MACHINE_TRANSITION   | Outside the transition table
            | INVALID_ASSIGNMENT_STATUS    | Assignment not in required status
            | DUPLICATE_ASSIGNMENT         | Asset already has an active one
            | APPROVAL_ALREADY_RESPONDED   | Approval no longer PENDING
            | APPROVAL_PENDING             | Quote still awaiting a decision
            | INSUFFICIENT_STOCK           | Deduction would go negative
            | CONCURRENT_MODIFICATION      | Lost an optimistic-lock race
------------|------------------------------|-----------------------------------
Forbidden   | FORBIDDEN                    | Actor not permitted
Immutable   | IMMUTABILITY_VIOLATION       | UPDATE/DELETE on append-only row
Audit       | AUDIT_CHAIN_BROKEN           | Stored hash != recomputed hash

Retry guidance:
   - ValidationError / ForbiddenError -> never retry
   - ConflictError -> caller re-fetches and decides
   - ConcurrentModificationError -> safe to retry the whole call
"""

from decimal import Decimal


class AssetKernelError(Exception):
    """
    Base exception for all asset kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "ASSET_KERNEL_ERROR"


# =============================================================================
# Validation
# =============================================================================


class ValidationError(AssetKernelError):
    """Malformed input or a structural rule violation."""

    code: str = "VALIDATION_ERROR"


class InvalidBranchPairError(ValidationError):
    """Source/destination branches are incompatible with the order purpose."""

    code: str = "INVALID_BRANCH_PAIR"

    def __init__(self, purpose: str, violations: list[str]):
        self.purpose = purpose
        self.violations = list(violations)
        super().__init__(
            f"Invalid branch pair for {purpose} order: " + "; ".join(self.violations)
        )


class InvalidPartLineError(ValidationError):
    """A part line has a non-positive quantity or a negative total."""

    code: str = "INVALID_PART_LINE"

    def __init__(self, part_id: str, reason: str):
        self.part_id = part_id
        self.reason = reason
        super().__init__(f"Invalid part line for {part_id}: {reason}")


class MissingResolutionError(ValidationError):
    """READY_FOR_RETURN entered without an accepted resolution tag."""

    code: str = "MISSING_RESOLUTION"

    def __init__(self, serial_number: str, resolution: str | None):
        self.serial_number = serial_number
        self.resolution = resolution
        super().__init__(
            f"Asset {serial_number} requires a resolution of REPAIRED, SCRAPPED "
            f"or REJECTED_REPAIR (got {resolution!r})"
        )


class RejectionReasonRequiredError(ValidationError):
    """Rejecting an approval or order needs a reason."""

    code: str = "REJECTION_REASON_REQUIRED"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"A reason is required to reject {entity_type} {entity_id}")


class InvalidPaymentAmountError(ValidationError):
    """Payment amount is zero or negative."""

    code: str = "INVALID_PAYMENT_AMOUNT"

    def __init__(self, amount: Decimal):
        self.amount = amount
        super().__init__(f"Payment amount must be positive, got {amount}")


class PaymentExceedsBalanceError(ValidationError):
    """Payment amount is larger than the debt's remaining balance."""

    code: str = "PAYMENT_EXCEEDS_BALANCE"

    def __init__(self, debt_id: str, amount: Decimal, remaining: Decimal):
        self.debt_id = debt_id
        self.amount = amount
        self.remaining = remaining
        super().__init__(
            f"Payment {amount} exceeds remaining balance {remaining} on debt {debt_id}"
        )


class AssetKindMismatchError(ValidationError):
    """Asset kind does not match what the operation handles."""

    code: str = "ASSET_KIND_MISMATCH"

    def __init__(self, serial_number: str, expected: str, actual: str):
        self.serial_number = serial_number
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Asset {serial_number} is a {actual}, operation requires {expected}"
        )


class InvalidOrderItemsError(ValidationError):
    """Order lines are empty, duplicated, or not on the order."""

    code: str = "INVALID_ORDER_ITEMS"

    def __init__(self, problems: list[str]):
        self.problems = list(problems)
        super().__init__("Invalid order items: " + "; ".join(self.problems))


class ImportRowError(ValidationError):
    """One or more bulk import rows were rejected."""

    code: str = "IMPORT_ROW_INVALID"

    def __init__(self, errors: list[tuple[int, str]]):
        self.errors = list(errors)
        super().__init__(
            "Import rejected: "
            + "; ".join(f"row {row}: {msg}" for row, msg in self.errors)
        )


# =============================================================================
# Not found
# =============================================================================


class NotFoundError(AssetKernelError):
    """Referenced entity is absent or outside the actor's scope."""

    code: str = "NOT_FOUND"
    entity_type: str = "Entity"

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"{self.entity_type} not found: {reference}")


class BranchNotFoundError(NotFoundError):
    code: str = "BRANCH_NOT_FOUND"
    entity_type: str = "Branch"


class AssetNotFoundError(NotFoundError):
    code: str = "ASSET_NOT_FOUND"
    entity_type: str = "Asset"


class OrderNotFoundError(NotFoundError):
    code: str = "ORDER_NOT_FOUND"
    entity_type: str = "TransferOrder"


class AssignmentNotFoundError(NotFoundError):
    code: str = "ASSIGNMENT_NOT_FOUND"
    entity_type: str = "ServiceAssignment"


class ApprovalNotFoundError(NotFoundError):
    code: str = "APPROVAL_NOT_FOUND"
    entity_type: str = "MaintenanceApprovalRequest"


class DebtNotFoundError(NotFoundError):
    code: str = "DEBT_NOT_FOUND"
    entity_type: str = "BranchDebt"


class PartNotFoundError(NotFoundError):
    code: str = "PART_NOT_FOUND"
    entity_type: str = "SparePart"


class TicketNotFoundError(NotFoundError):
    code: str = "TICKET_NOT_FOUND"
    entity_type: str = "MaintenanceTicket"


# =============================================================================
# Conflict
# =============================================================================


class ConflictError(AssetKernelError):
    """A precondition on current state was violated; re-fetch and decide."""

    code: str = "CONFLICT"


class AssetUnavailableError(ConflictError):
    """Asset is in transit, retired, or inside a repair cycle."""

    code: str = "ASSET_UNAVAILABLE"

    def __init__(
        self,
        serial_number: str,
        status: str,
        reason: str,
        problems: list[tuple[str, str, str]] | None = None,
    ):
        self.serial_number = serial_number
        self.status = status
        self.reason = reason
        # Every (serial, status, reason) found in one validation pass
        self.problems = problems or [(serial_number, status, reason)]
        super().__init__(
            "; ".join(f"Asset {s} is unavailable ({st}): {r}" for s, st, r in self.problems)
        )


class DuplicateSerialError(ConflictError):
    """Serial number already registered."""

    code: str = "DUPLICATE_SERIAL"

    def __init__(self, serial_number: str):
        self.serial_number = serial_number
        super().__init__(f"Serial number already registered: {serial_number}")


class InvalidOrderStatusError(ConflictError):
    """Transfer order is not in a status that allows the operation."""

    code: str = "INVALID_ORDER_STATUS"

    def __init__(self, order_number: str, current_status: str, operation: str):
        self.order_number = order_number
        self.current_status = current_status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} order {order_number} in status {current_status}"
        )


class InvalidMachineTransitionError(ConflictError):
    """Requested asset status change is outside the transition table."""

    code: str = "INVALID_MACHINE_TRANSITION"

    def __init__(self, serial_number: str, from_status: str, to_status: str):
        self.serial_number = serial_number
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid transition for {serial_number}: {from_status} -> {to_status}"
        )


class InvalidAssignmentStatusError(ConflictError):
    """Service assignment is not in the status the operation requires."""

    code: str = "INVALID_ASSIGNMENT_STATUS"

    def __init__(self, assignment_id: str, current_status: str, required: str):
        self.assignment_id = assignment_id
        self.current_status = current_status
        self.required = required
        super().__init__(
            f"Assignment {assignment_id} is {current_status}, requires {required}"
        )


class DuplicateAssignmentError(ConflictError):
    """Asset already has a non-terminal service assignment."""

    code: str = "DUPLICATE_ASSIGNMENT"

    def __init__(self, serial_number: str, assignment_id: str):
        self.serial_number = serial_number
        self.assignment_id = assignment_id
        super().__init__(
            f"Asset {serial_number} already has active assignment {assignment_id}"
        )


class ApprovalAlreadyRespondedError(ConflictError):
    """Approval request is no longer PENDING."""

    code: str = "APPROVAL_ALREADY_RESPONDED"

    def __init__(self, approval_id: str, status: str):
        self.approval_id = approval_id
        self.status = status
        super().__init__(f"Approval {approval_id} already {status.lower()}")


class ApprovalPendingError(ConflictError):
    """A repair quote for the asset is still waiting for the paying branch."""

    code: str = "APPROVAL_PENDING"

    def __init__(self, serial_number: str, approval_id: str):
        self.serial_number = serial_number
        self.approval_id = approval_id
        super().__init__(
            f"Repair quote {approval_id} for {serial_number} is awaiting a decision"
        )


class InsufficientStockError(ConflictError):
    """
    One or more part lines exceed available stock.

    ``shortfalls`` enumerates every insufficient line, not just the first.
    """

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, branch_id: str, shortfalls: list):
        self.branch_id = branch_id
        self.shortfalls = list(shortfalls)
        detail = ", ".join(
            f"{s.part_name or s.part_id}: requested {s.requested}, available {s.available}"
            for s in self.shortfalls
        )
        super().__init__(f"Insufficient stock at branch {branch_id}: {detail}")


class ConcurrentModificationError(ConflictError):
    """Another transaction changed the same rows first."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Concurrent modification during {operation}: {detail}")


# =============================================================================
# Forbidden
# =============================================================================


class ForbiddenError(AssetKernelError):
    """
    Actor is not permitted to perform the operation.

    The message names only the operation, never the blocked resource.
    """

    code: str = "FORBIDDEN"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Not permitted: {operation}")


# =============================================================================
# Immutability
# =============================================================================


class ImmutabilityViolationError(AssetKernelError):
    """Attempted UPDATE or DELETE of an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")


class AuditChainBrokenError(AssetKernelError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, event_id: str, expected_hash: str, actual_hash: str):
        self.event_id = event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at event {event_id}: "
            f"expected {expected_hash}, got {actual_hash}"
        )
