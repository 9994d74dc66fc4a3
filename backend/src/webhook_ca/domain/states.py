from enum import StrEnum


class ResourceKind(StrEnum):
    SECRET = "secret"
    MUTATING_WEBHOOK_CONFIGURATION = "mutating_webhook_configuration"
    VALIDATING_WEBHOOK_CONFIGURATION = "validating_webhook_configuration"


class OperationResult(StrEnum):
    """Outcome of a create-or-update style write."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


class RegenerateReason(StrEnum):
    """Why the evaluator asked for a new CA."""

    MISSING = "missing"
    EXPIRED = "expired"
    FORCED = "forced"
