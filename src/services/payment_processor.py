"""
Payment processor boundary.

The transfer orchestrator talks to a PaymentProcessor only. The Stripe
implementation creates one Connect transfer per non-platform
destination; the platform keeps its share by not transferring it out
of the original charge.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, Optional, Tuple

import stripe

from src.config import settings
from src.services.errors import (
    PermanentProcessorError,
    ProcessorError,
    TransientProcessorError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransferInstruction:
    """Move ``amount`` minor units to one destination account."""

    role: str
    destination_account_id: str
    amount: int


@dataclass(frozen=True)
class TransferRequest:
    charge_reference: Optional[str]
    currency: str
    instructions: Tuple[TransferInstruction, ...]
    idempotency_key: str
    metadata: Dict[str, str] = field(default_factory=dict)


class PaymentProcessor(ABC):
    """Multi-destination transfer capability of an external processor."""

    @abstractmethod
    async def create_transfers(self, request: TransferRequest) -> Dict[str, str]:
        """
        Execute every instruction of ``request``.

        Repeating a request with the same idempotency key must not move
        funds twice: instructions that already went through return the
        same transfer ids.

        Returns:
            Processor transfer id per instruction role

        Raises:
            TransientProcessorError: safe to retry with the same key
            PermanentProcessorError: retrying will not help

            Either error carries the transfers created before the
            failure in ``completed``.
        """

    @abstractmethod
    async def reverse_transfers(
        self, request: TransferRequest, transfer_ids: Dict[str, str]
    ) -> Dict[str, str]:
        """
        Undo every transfer made under the idempotency key of ``request``.

        ``transfer_ids`` are the transfers the caller knows about; an
        implementation also reverses transfers it can find on the
        processor side whose response never reached the caller.

        Returns:
            Reversed transfer id per role

        Raises:
            ProcessorError: at least one transfer may still stand
        """


def classify_stripe_error(error: stripe.StripeError) -> ProcessorError:
    """Map a Stripe SDK error to a transient or permanent processor error."""
    code = getattr(error, "code", None) or type(error).__name__
    message = getattr(error, "user_message", None) or str(error)
    http_status = getattr(error, "http_status", None)

    if isinstance(error, (stripe.APIConnectionError, stripe.RateLimitError)):
        return TransientProcessorError(message, code=code)
    if isinstance(error, stripe.APIError) and (http_status is None or http_status >= 500):
        return TransientProcessorError(message, code=code)
    if http_status is not None and http_status >= 500:
        return TransientProcessorError(message, code=code)
    return PermanentProcessorError(message, code=code)


class StripePaymentProcessor(PaymentProcessor):
    """Stripe Connect transfers funded from the original charge.

    Every transfer of a request shares ``transfer_group`` = idempotency
    key, which is how reversal finds transfers whose response was lost.
    """

    def __init__(self, api_key: str, timeout_seconds: float = 10.0):
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        # Retry policy lives in the transfer orchestrator
        stripe.max_network_retries = 0
        # Enforced by the HTTP client so a worker thread never outlives its call
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout_seconds)

    async def create_transfers(self, request: TransferRequest) -> Dict[str, str]:
        created: Dict[str, str] = {}
        for instruction in request.instructions:
            try:
                transfer = await self._call(self._create_transfer, request, instruction)
            except ProcessorError as e:
                e.completed.update(created)
                raise
            created[instruction.role] = transfer.id
            logger.info(
                f"Stripe transfer {transfer.id}: {instruction.amount} {request.currency} "
                f"to {instruction.role} ({instruction.destination_account_id})"
            )
        return created

    async def reverse_transfers(
        self, request: TransferRequest, transfer_ids: Dict[str, str]
    ) -> Dict[str, str]:
        targets = dict(transfer_ids)
        group = await self._call(self._list_group, request)
        for transfer in group.data:
            if getattr(transfer, "reversed", False):
                continue
            role = (transfer.metadata or {}).get("role") or transfer.id
            targets.setdefault(role, transfer.id)

        reversed_ids: Dict[str, str] = {}
        for role, transfer_id in targets.items():
            try:
                await self._call(self._reverse_transfer, request, role, transfer_id)
            except ProcessorError as e:
                logger.error(f"Could not reverse Stripe transfer {transfer_id} ({role}): {e}")
                raise PermanentProcessorError(
                    f"Transfer {transfer_id} to {role} could not be reversed: {e}",
                    code="partial_transfer_unreversed",
                    completed={r: t for r, t in targets.items() if r not in reversed_ids},
                ) from e
            reversed_ids[role] = transfer_id
            logger.warning(f"Reversed Stripe transfer {transfer_id} ({role}) after failed split")
        return reversed_ids

    async def _call(self, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except stripe.StripeError as e:
            raise classify_stripe_error(e) from e

    def _create_transfer(self, request: TransferRequest, instruction: TransferInstruction):
        params = {
            "amount": instruction.amount,
            "currency": request.currency,
            "destination": instruction.destination_account_id,
            "transfer_group": request.idempotency_key,
            "metadata": {**request.metadata, "role": instruction.role},
        }
        if request.charge_reference:
            params["source_transaction"] = request.charge_reference

        return stripe.Transfer.create(
            api_key=self.api_key,
            idempotency_key=f"{request.idempotency_key}:{instruction.role}",
            **params,
        )

    def _list_group(self, request: TransferRequest):
        return stripe.Transfer.list(
            api_key=self.api_key,
            transfer_group=request.idempotency_key,
            limit=10,
        )

    def _reverse_transfer(self, request: TransferRequest, role: str, transfer_id: str):
        return stripe.Transfer.create_reversal(
            transfer_id,
            api_key=self.api_key,
            idempotency_key=f"{request.idempotency_key}:{role}:reversal",
        )


@lru_cache
def get_payment_processor() -> PaymentProcessor:
    """Configured processor instance."""
    return StripePaymentProcessor(
        api_key=settings.stripe_secret_key,
        timeout_seconds=settings.stripe_api_timeout_seconds,
    )
