"""
Exceptions raised by the split engine.

Configuration and input errors abort the pipeline before money logic
runs. Processor errors never leave the transfer orchestrator; they are
turned into a recorded outcome there. Business-rule rejections are not
exceptions at all (see split_validator.ValidationResult).
"""


class CommissionError(Exception):
    """Base class for engine errors."""


class ConfigurationError(CommissionError):
    """Rate table, plan or tier configuration is missing or inconsistent."""


class UnknownTierPlanCombination(ConfigurationError):
    def __init__(self, tier, plan, as_of):
        self.tier = tier
        self.plan = plan
        self.as_of = as_of
        super().__init__(f"No rate table entry for tier={tier} plan={plan} at {as_of.isoformat()}")


class NoActivePlan(ConfigurationError):
    def __init__(self, billing_entity_id: str, as_of):
        self.billing_entity_id = billing_entity_id
        self.as_of = as_of
        super().__init__(f"No active billing plan for {billing_entity_id} at {as_of.isoformat()}")


class NoActiveTier(ConfigurationError):
    def __init__(self, expert_id: str, detail: str = "no active tier"):
        self.expert_id = expert_id
        super().__init__(f"Cannot determine tier for expert {expert_id}: {detail}")


class UnknownClinic(ConfigurationError):
    def __init__(self, clinic_id: str):
        self.clinic_id = clinic_id
        super().__init__(f"No active clinic settings for {clinic_id}")


class InvalidRateTable(ConfigurationError):
    """Rate table file could not be loaded or failed validation."""


class InputError(CommissionError):
    """Inbound data is malformed or out of range."""


class InvalidGrossAmount(InputError):
    def __init__(self, gross_amount):
        self.gross_amount = gross_amount
        super().__init__(f"Gross amount must be a non-negative integer, got {gross_amount!r}")


class InvalidRefund(InputError):
    """Refund cannot be applied to the referenced record."""


class ProcessorError(Exception):
    """Payment processor call failed.

    ``completed`` holds the transfers (role -> id) the failing call had
    already created before it stopped.
    """

    def __init__(self, message: str, code: str = "unknown_error", completed=None):
        self.code = code
        self.completed = dict(completed or {})
        super().__init__(message)


class TransientProcessorError(ProcessorError):
    """Network, rate limit or processor-side outage; safe to retry."""


class PermanentProcessorError(ProcessorError):
    """Invalid or disabled destination, insufficient balance and similar."""
