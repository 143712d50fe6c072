"""Try-on generation pipeline.

One request moves through::

    RECEIVED -> AUTHENTICATED -> CREDIT_RESERVED -> GENERATING -> ENCODED
      -> PUBLISHED (optional) -> LOGGED -> RESPONDED

and can stop early in ``REJECTED_UNAUTHORIZED``, ``REJECTED_MALFORMED`` or
``REJECTED_INSUFFICIENT_CREDITS`` without touching the ledger beyond the
refused consume. Once a credit is reserved, a failure goes through
``FAILED -> REFUNDING -> LOGGED -> RESPONDED``; the error reaches the caller
only after the refund and the failure record. The refund is issued by the
ledger reservation itself, so no code path can leave the block holding a
consumed credit for work that did not complete.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from ..core.config import settings
from ..core.security import IdentityVerifier, extract_bearer_token
from ..core.structured_logging import user_id_var
from ..models.exceptions import (
    GenerationFailedException,
    InsufficientCreditsException,
    MalformedInputException,
    MissingFieldsException,
    UnauthorizedException,
)
from ..models.records import GenerationRecord, GenerationStatus
from ..models.schemas import GenerateRequest
from .audit import GenerationAuditLog, SqlAuditStore
from .credit_ledger import CreditLedger, SqlCreditLedger
from .image_codec import ImagePayload, decode_data_url, encode_data_url, sniff_image_mime
from .image_edit import ImageEditClient
from .publisher import ResultPublisher

logger = logging.getLogger(__name__)


class GenerationState(str, Enum):
    RECEIVED = "received"
    AUTHENTICATED = "authenticated"
    CREDIT_RESERVED = "credit_reserved"
    GENERATING = "generating"
    ENCODED = "encoded"
    PUBLISHED = "published"
    REFUNDING = "refunding"
    LOGGED = "logged"
    RESPONDED = "responded"
    REJECTED_UNAUTHORIZED = "rejected_unauthorized"
    REJECTED_MALFORMED = "rejected_malformed"
    REJECTED_INSUFFICIENT_CREDITS = "rejected_insufficient_credits"
    FAILED = "failed"


class StateTrail:
    """Ordered record of the states one request went through."""

    def __init__(self):
        self.states: List[GenerationState] = [GenerationState.RECEIVED]

    @property
    def current(self) -> GenerationState:
        return self.states[-1]

    def move(self, state: GenerationState) -> None:
        logger.debug(f"Generation state {self.current.value} -> {state.value}")
        self.states.append(state)


@dataclass
class GenerationOutcome:
    image_url: str
    remaining_credits: int
    publish_error: Optional[str] = None
    states: List[GenerationState] = field(default_factory=list)


class TryOnGenerationService:
    """Runs one paid try-on generation end to end."""

    def __init__(
        self,
        verifier: IdentityVerifier,
        ledger: CreditLedger,
        image_client: ImageEditClient,
        publisher: ResultPublisher,
        audit_log: GenerationAuditLog,
        cost_credits: int = 1,
    ):
        self.verifier = verifier
        self.ledger = ledger
        self.image_client = image_client
        self.publisher = publisher
        self.audit_log = audit_log
        self.cost_credits = cost_credits

    async def generate(self, authorization: Optional[str], request: GenerateRequest,
                       trail: Optional[StateTrail] = None) -> GenerationOutcome:
        trail = trail or StateTrail()

        missing = request.missing_fields()
        if missing:
            raise MissingFieldsException(missing)

        try:
            user = await self.verifier.verify(extract_bearer_token(authorization))
        except UnauthorizedException:
            trail.move(GenerationState.REJECTED_UNAUTHORIZED)
            raise
        trail.move(GenerationState.AUTHENTICATED)
        user_id_var.set(user.user_id)
        user_email = user.email or request.user_email

        # Inputs are checked before any credit is taken
        try:
            person = decode_data_url(request.base_image, field="baseImage")
            garment = decode_data_url(request.product_image, field="productImage")
        except MalformedInputException:
            trail.move(GenerationState.REJECTED_MALFORMED)
            raise

        start = time.time()
        reservation = self.ledger.reserve(user.user_id)
        try:
            async with reservation:
                trail.move(GenerationState.CREDIT_RESERVED)
                logger.info("Credits deducted", extra={"remaining_credits": reservation.remaining})
                try:
                    result = await self._generate(person, garment, request.aspect_ratio, trail)
                except GenerationFailedException:
                    trail.move(GenerationState.FAILED)
                    trail.move(GenerationState.REFUNDING)
                    raise
                reservation.commit()
        except InsufficientCreditsException:
            trail.move(GenerationState.REJECTED_INSUFFICIENT_CREDITS)
            logger.info("Generation rejected: insufficient credits")
            raise
        except GenerationFailedException as e:
            logger.error("Generation failed", extra={"error": e.message, **e.details})
            await self.audit_log.record(GenerationRecord(
                user_email=user_email,
                status=GenerationStatus.FAILED,
                cost_in_credits=0 if reservation.refunded else self.cost_credits,
                provider=self.image_client.provider,
                model=self.image_client.model,
                duration_ms=int((time.time() - start) * 1000),
                error_message=e.message,
            ))
            trail.move(GenerationState.LOGGED)
            trail.move(GenerationState.RESPONDED)
            raise

        mime, data, data_url = result
        publish = await self.publisher.publish(data, mime)
        if publish.published:
            trail.move(GenerationState.PUBLISHED)

        await self.audit_log.record(GenerationRecord(
            user_email=user_email,
            status=GenerationStatus.SUCCESS,
            cost_in_credits=self.cost_credits,
            provider=self.image_client.provider,
            model=self.image_client.model,
            duration_ms=int((time.time() - start) * 1000),
            image_url=publish.url,
        ))
        trail.move(GenerationState.LOGGED)
        trail.move(GenerationState.RESPONDED)

        return GenerationOutcome(
            image_url=publish.url or data_url,
            remaining_credits=reservation.remaining,
            publish_error=publish.error,
            states=list(trail.states),
        )

    async def _generate(self, person: ImagePayload, garment: ImagePayload,
                        aspect_ratio: Optional[str], trail: StateTrail):
        trail.move(GenerationState.GENERATING)
        try:
            data = await self.image_client.edit(person, garment, aspect_ratio)
            mime = sniff_image_mime(data)
            data_url = encode_data_url(mime, data)
        except GenerationFailedException:
            raise
        except Exception as e:
            logger.error("Unexpected error during generation", exc_info=True)
            raise GenerationFailedException(
                str(e) or type(e).__name__,
                provider=self.image_client.provider,
                model=self.image_client.model,
            ) from e
        trail.move(GenerationState.ENCODED)
        return mime, data, data_url


_service: Optional[TryOnGenerationService] = None


def get_generation_service() -> TryOnGenerationService:
    """Process-wide service; the image client's semaphore must be shared."""
    global _service
    if _service is None:
        _service = TryOnGenerationService(
            verifier=IdentityVerifier.from_settings(),
            ledger=SqlCreditLedger(),
            image_client=ImageEditClient.from_settings(),
            publisher=ResultPublisher(),
            audit_log=GenerationAuditLog(SqlAuditStore()),
            cost_credits=settings.generation_cost_credits,
        )
    return _service
