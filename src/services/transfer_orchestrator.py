"""
Transfer orchestrator - the only place that moves funds.

Turns an accepted split into processor transfer instructions (one per
non-platform destination with a positive amount) and retries transient
failures with bounded exponential backoff. When a split finally fails,
whatever part of it went through is reversed. Processor failures end
up as a TransferOutcome, never as an exception.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Mapping, Optional

from src.config import settings
from src.models.commission import TransferStatus
from src.services.errors import (
    PermanentProcessorError,
    ProcessorError,
    TransientProcessorError,
)
from src.services.payment_processor import (
    PaymentProcessor,
    TransferInstruction,
    TransferRequest,
)
from src.services.split_calculator import Split

logger = logging.getLogger(__name__)

CLINIC = "clinic"
EXPERT = "expert"


def derive_idempotency_key(transaction_id: str) -> str:
    """Stable key for every transfer attempt of one transaction."""
    return f"split:{transaction_id}"


@dataclass(frozen=True)
class TransferOutcome:
    status: TransferStatus
    attempts: int = 0
    transfer_ids: Dict[str, str] = field(default_factory=dict)
    failure_reason: Optional[str] = None

    @classmethod
    def not_attempted(cls, reason: Optional[str] = None) -> "TransferOutcome":
        return cls(status=TransferStatus.NOT_ATTEMPTED, failure_reason=reason)


def build_instructions(split: Split, destinations: Mapping[str, Optional[str]]):
    """Instructions for every positive non-platform share.

    Raises:
        KeyError: a share is due to a role with no destination account
    """
    shares = ((CLINIC, split.clinic_amount), (EXPERT, split.expert_amount))
    instructions = []
    for role, amount in shares:
        if amount <= 0:
            continue
        account = destinations.get(role)
        if not account:
            raise KeyError(role)
        instructions.append(
            TransferInstruction(role=role, destination_account_id=account, amount=amount)
        )
    return tuple(instructions)


class TransferOrchestrator:
    """Executes validated splits against a payment processor."""

    def __init__(
        self,
        processor: PaymentProcessor,
        max_attempts: Optional[int] = None,
        backoff_base_seconds: Optional[float] = None,
        backoff_max_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.processor = processor
        self.max_attempts = max_attempts or settings.transfer_max_attempts
        self.backoff_base_seconds = (
            settings.transfer_backoff_base_seconds if backoff_base_seconds is None else backoff_base_seconds
        )
        self.backoff_max_seconds = (
            settings.transfer_backoff_max_seconds if backoff_max_seconds is None else backoff_max_seconds
        )
        self._sleep = sleep

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        return min(self.backoff_base_seconds * (2 ** (attempt - 1)), self.backoff_max_seconds)

    async def execute_transfer(
        self,
        split: Split,
        destinations: Mapping[str, Optional[str]],
        idempotency_key: str,
        currency: str,
        charge_reference: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> TransferOutcome:
        """Move the non-platform shares of an accepted split.

        Args:
            split: Accepted split
            destinations: Destination account per role ("clinic", "expert")
            idempotency_key: Stable key derived from the transaction id
            currency: ISO currency code
            charge_reference: Processor charge funding the transfers
            metadata: Extra processor metadata

        Returns:
            TransferOutcome; never raises for processor failures
        """
        try:
            instructions = build_instructions(split, destinations)
        except KeyError as e:
            role = e.args[0]
            logger.error(f"No destination account for {role} share ({idempotency_key})")
            return TransferOutcome(
                status=TransferStatus.FAILED,
                failure_reason=f"missing_destination: no {role} account",
            )

        if not instructions:
            logger.info(f"Nothing to transfer for {idempotency_key} (zero amounts)")
            return TransferOutcome.not_attempted("zero_amount")

        request = TransferRequest(
            charge_reference=charge_reference,
            currency=currency,
            instructions=instructions,
            idempotency_key=idempotency_key,
            metadata=dict(metadata or {}),
        )

        attempt = 0
        completed: Dict[str, str] = {}
        while True:
            attempt += 1
            logger.info(f"Transfer attempt {attempt}/{self.max_attempts} for {idempotency_key}")
            try:
                transfer_ids = await self.processor.create_transfers(request)
            except TransientProcessorError as e:
                completed.update(e.completed)
                if attempt >= self.max_attempts:
                    logger.error(
                        f"Transfer {idempotency_key} gave up after {attempt} attempts: [{e.code}] {e}"
                    )
                    return await self._compensate(
                        request, completed, attempt, f"retries_exhausted: [{e.code}] {e}"
                    )
                delay = self.backoff_delay(attempt)
                logger.warning(
                    f"Transient failure for {idempotency_key} ([{e.code}] {e}); retrying in {delay:.2f}s"
                )
                await self._sleep(delay)
                continue
            except PermanentProcessorError as e:
                completed.update(e.completed)
                logger.error(f"Transfer {idempotency_key} failed permanently: [{e.code}] {e}")
                return await self._compensate(request, completed, attempt, f"[{e.code}] {e}")

            logger.info(f"Transfer {idempotency_key} succeeded: {transfer_ids}")
            return TransferOutcome(
                status=TransferStatus.SUCCEEDED,
                attempts=attempt,
                transfer_ids=dict(transfer_ids),
            )

    async def _compensate(
        self,
        request: TransferRequest,
        completed: Dict[str, str],
        attempts: int,
        failure_reason: str,
    ) -> TransferOutcome:
        """Reverse whatever part of a failed split went through.

        A split that cannot be fully reversed is still FAILED, but keeps
        the ids of the transfers that stand so they can be chased.
        """
        try:
            reversed_ids = await self.processor.reverse_transfers(request, completed)
        except ProcessorError as e:
            standing = e.completed or completed
            logger.error(
                f"Split {request.idempotency_key} left partial transfers {standing}: [{e.code}] {e}"
            )
            return TransferOutcome(
                status=TransferStatus.FAILED,
                attempts=attempts,
                transfer_ids=dict(standing),
                failure_reason=f"partial_transfer_unreversed: {failure_reason}; [{e.code}] {e}",
            )

        if reversed_ids:
            failure_reason = f"{failure_reason}; reversed {', '.join(sorted(reversed_ids))}"
        return TransferOutcome(
            status=TransferStatus.FAILED,
            attempts=attempts,
            failure_reason=failure_reason,
        )
