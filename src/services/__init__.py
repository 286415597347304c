"""Business logic services."""

from src.services.commission_pipeline import CommissionPipeline, PipelineResult, preview_split
from src.services.rate_resolver import resolve_rate
from src.services.split_calculator import Split, compute_reversal_split, compute_split
from src.services.split_validator import SplitPolicy, ValidationResult, compute_and_validate, validate
from src.services.transfer_orchestrator import TransferOrchestrator, TransferOutcome

__all__ = [
    "CommissionPipeline",
    "PipelineResult",
    "preview_split",
    "resolve_rate",
    "Split",
    "compute_split",
    "compute_reversal_split",
    "SplitPolicy",
    "ValidationResult",
    "validate",
    "compute_and_validate",
    "TransferOrchestrator",
    "TransferOutcome",
]
