"""
Typed Exception Hierarchy for the Registry Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Approval conflicts, permission failures and missing rates all reach the
caller (an API controller, the scheduler, an operator script) and each one
is handled differently: a duplicate pending request is a 409 naming the
blocking request, a missing rate aborts one job run, an apply failure asks
the checker to retry.  Callers catch by type and read structured
attributes, never parse messages.

Every exception:
  1. Has a TYPED class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes

Example:
    try:
        service.create_request(...)
    except DuplicatePendingRequestError as e:
        return conflict(code=e.code, blocking_request_id=e.existing_request_id)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    RegistryKernelError (base)
    |
    +-- ApprovalError
    |   +-- DuplicatePendingRequestError
    |   +-- RequestNotFoundError
    |   +-- AlreadyDecidedError
    |   +-- ForbiddenApproverError
    |   +-- UnroutableRoleError
    |   +-- InvalidPayloadError
    |   +-- UnsupportedActionError
    |   +-- ApplyStepFailedError
    |
    +-- ActionError
    |   +-- EntityNotFoundError
    |   +-- EntityConflictError
    |   +-- ActionRejectedError
    |
    +-- RateError
    |   +-- NoActiveRateError
    |   +-- DuplicateRateError
    |   +-- InvalidRateError
    |
    +-- SchedulerError
    |   +-- UnknownTaskError
    |   +-- JobAlreadyRunningError
    |   +-- InvalidCronExpressionError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                       | When Raised
-------------|----------------------------|--------------------------------------
Approval     | DUPLICATE_PENDING_REQUEST  | Same entity/action already pending
             | REQUEST_NOT_FOUND          | Request id doesn't exist
             | ALREADY_DECIDED            | Request not PENDING (or lost the CAS)
             | FORBIDDEN_APPROVER         | Checker role/sub-city can't decide
             | UNROUTABLE_ROLE            | Maker role has no approver route
             | INVALID_PAYLOAD            | Payload variant doesn't match key
             | UNSUPPORTED_ACTION         | No payload/apply step for the pair
             | APPLY_STEP_FAILED          | Apply rolled back, still PENDING
-------------|----------------------------|--------------------------------------
Action       | ENTITY_NOT_FOUND           | Target entity missing or deleted
             | ENTITY_CONFLICT            | Unique key already taken
             | ACTION_REJECTED            | Business rule blocks the mutation
-------------|----------------------------|--------------------------------------
Rate         | NO_ACTIVE_RATE             | No effective row for a rate type
             | DUPLICATE_RATE             | (rate_type, effective_from) exists
             | INVALID_RATE               | Value outside the accepted range
-------------|----------------------------|--------------------------------------
Scheduler    | UNKNOWN_TASK               | run_now with unregistered job name
             | JOB_ALREADY_RUNNING        | Per-job lock not acquired in time
             | INVALID_CRON_EXPRESSION    | Cron expression doesn't parse
-------------|----------------------------|--------------------------------------
Immutability | IMMUTABILITY_VIOLATION     | Update/delete of audit or log rows

===============================================================================
HANDLING PATTERNS
===============================================================================

1. ActionError subclasses are raised inside apply steps.  The maker-checker
   service rolls the SAVEPOINT back and re-raises them wrapped in
   ApplyStepFailedError, whose ``cause_code`` keeps the original code.

2. RateError inside a job aborts that run only.  The scheduler logs it and
   the next scheduled fire proceeds normally.
"""


class RegistryKernelError(Exception):
    """Base exception for all registry kernel errors."""

    code: str = "REGISTRY_KERNEL_ERROR"


# Approval exceptions


class ApprovalError(RegistryKernelError):
    """Base exception for maker-checker errors."""

    code: str = "APPROVAL_ERROR"


class DuplicatePendingRequestError(ApprovalError):
    """A PENDING request already exists for the same entity and action."""

    code: str = "DUPLICATE_PENDING_REQUEST"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        action_type: str,
        existing_request_id: str | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.action_type = action_type
        self.existing_request_id = existing_request_id
        blocking = f" (blocking request {existing_request_id})" if existing_request_id else ""
        super().__init__(
            f"A pending approval request already exists for "
            f"{entity_type}/{entity_id} {action_type}{blocking}"
        )


class RequestNotFoundError(ApprovalError):
    """Approval request with given ID was not found."""

    code: str = "REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Approval request not found: {request_id}")


class AlreadyDecidedError(ApprovalError):
    """Request is no longer PENDING."""

    code: str = "ALREADY_DECIDED"

    def __init__(self, request_id: str, status: str):
        self.request_id = request_id
        self.status = status
        super().__init__(f"Request {request_id} is already {status}")


class ForbiddenApproverError(ApprovalError):
    """Checker is not allowed to decide this request."""

    code: str = "FORBIDDEN_APPROVER"

    def __init__(self, request_id: str, checker_role: str, approver_role: str, reason: str = ""):
        self.request_id = request_id
        self.checker_role = checker_role
        self.approver_role = approver_role
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(
            f"Insufficient permissions: {checker_role} cannot decide request "
            f"{request_id} routed to {approver_role}{detail}"
        )


class UnroutableRoleError(ApprovalError):
    """Maker role has no approver route."""

    code: str = "UNROUTABLE_ROLE"

    def __init__(self, maker_role: str):
        self.maker_role = maker_role
        super().__init__(f"No approver route for maker role: {maker_role}")


class InvalidPayloadError(ApprovalError):
    """Payload does not match the variant registered for its entity/action."""

    code: str = "INVALID_PAYLOAD"

    def __init__(self, entity_type: str, action_type: str, reason: str):
        self.entity_type = entity_type
        self.action_type = action_type
        self.reason = reason
        super().__init__(f"Invalid payload for {entity_type}/{action_type}: {reason}")


class UnsupportedActionError(ApprovalError):
    """No payload variant or apply step exists for the entity/action pair."""

    code: str = "UNSUPPORTED_ACTION"

    def __init__(self, entity_type: str, action_type: str):
        self.entity_type = entity_type
        self.action_type = action_type
        super().__init__(f"Unsupported action {action_type} for entity {entity_type}")


class ApplyStepFailedError(ApprovalError):
    """
    The apply step raised; its SAVEPOINT was rolled back.

    The request remains PENDING.  ``cause_code`` carries the code of the
    underlying error when it was a RegistryKernelError.
    """

    code: str = "APPLY_STEP_FAILED"

    def __init__(self, request_id: str, cause: BaseException):
        self.request_id = request_id
        self.cause_code = getattr(cause, "code", type(cause).__name__)
        self.cause_message = str(cause)
        super().__init__(
            f"Applying request {request_id} failed ({self.cause_code}): {cause}"
        )


# Apply-step exceptions


class ActionError(RegistryKernelError):
    """Base exception for errors raised while applying an approved action."""

    code: str = "ACTION_ERROR"


class EntityNotFoundError(ActionError):
    """Target entity is missing or soft-deleted."""

    code: str = "ENTITY_NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


class EntityConflictError(ActionError):
    """A unique natural key is already taken."""

    code: str = "ENTITY_CONFLICT"

    def __init__(self, entity_type: str, field: str, value: str):
        self.entity_type = entity_type
        self.field = field
        self.value = value
        super().__init__(f"{entity_type} with {field}={value} already exists")


class ActionRejectedError(ActionError):
    """A business rule blocks the mutation."""

    code: str = "ACTION_REJECTED"

    def __init__(self, reason_code: str, message: str):
        self.reason_code = reason_code
        super().__init__(message)


# Rate exceptions


class RateError(RegistryKernelError):
    """Base exception for rate configuration errors."""

    code: str = "RATE_ERROR"


class NoActiveRateError(RateError):
    """No rate row of this type is effective at the given instant."""

    code: str = "NO_ACTIVE_RATE"

    def __init__(self, rate_type: str, as_of: object):
        self.rate_type = rate_type
        self.as_of = str(as_of)
        super().__init__(f"No currently effective active rate for {rate_type} at {as_of}")


class DuplicateRateError(RateError):
    """A rate row already exists for (rate_type, effective_from)."""

    code: str = "DUPLICATE_RATE"

    def __init__(self, rate_type: str, effective_from: object):
        self.rate_type = rate_type
        self.effective_from = str(effective_from)
        super().__init__(
            f"Rate {rate_type} effective from {effective_from} already exists"
        )


class InvalidRateError(RateError):
    """Rate value is outside its accepted range."""

    code: str = "INVALID_RATE"

    def __init__(self, rate_type: str, value: object, reason: str):
        self.rate_type = rate_type
        self.value = str(value)
        self.reason = reason
        super().__init__(f"Invalid value {value} for {rate_type}: {reason}")


# Scheduler exceptions


class SchedulerError(RegistryKernelError):
    """Base exception for scheduler errors."""

    code: str = "SCHEDULER_ERROR"


class UnknownTaskError(SchedulerError):
    """No job is registered under the given name."""

    code: str = "UNKNOWN_TASK"

    def __init__(self, job_name: str, available: list[str] | None = None):
        self.job_name = job_name
        self.available = sorted(available or [])
        super().__init__(
            f"Task '{job_name}' not found. Available: {self.available}"
        )


class JobAlreadyRunningError(SchedulerError):
    """The job's lock could not be acquired within the timeout."""

    code: str = "JOB_ALREADY_RUNNING"

    def __init__(self, job_name: str, timeout_seconds: float):
        self.job_name = job_name
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Job '{job_name}' is still running after waiting {timeout_seconds}s"
        )


class InvalidCronExpressionError(SchedulerError):
    """Cron expression failed to parse."""

    code: str = "INVALID_CRON_EXPRESSION"

    def __init__(self, expression: str, reason: str):
        self.expression = expression
        self.reason = reason
        super().__init__(f"Invalid cron expression '{expression}': {reason}")


# Immutability exceptions


class ImmutabilityError(RegistryKernelError):
    """Base exception for append-only violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to update or delete an append-only row."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"{entity_type} {entity_id}: {reason}")
