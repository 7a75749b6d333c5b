"""
Fare Negotiation Engine
=======================

A single bounded bidding round between the passenger and a simulated
counterpart (the arbitration collaborator).

Bounds
------
* Passenger proposal:  ``E x (1 - R) <= P <= E``   (R = negotiation range)
* Counterpart envelope: ``min = E x 0.90``, ``max = E x 1.20``

Protocol
--------
1. ``start(estimate)`` opens negotiation at the estimated fare.
2. ``propose(P)`` validates P and submits ``{E, P, min, max}`` to the
   arbitrator.
3. ``accepted`` -> agreed at P.  ``counter-offer`` -> the passenger may
   ``accept_counter_offer()`` or ``cancel()``; there is no passenger
   counter.  Anything else is a terminal failure: the reason is kept in
   ``failure_reason`` and the engine drops back to idle.  No retries.

The agreed outcome carries a clone of the estimate breakdown whose
``total`` is overwritten with the agreed fare.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from .enums import NegotiationDecision
from .errors import ExternalServiceError, InvalidFare, InvalidStateTransition
from .pricing import FareBreakdown, FareEstimate

logger = logging.getLogger(__name__)

# float slack for slider endpoints
_EPSILON = 1e-9


def proposal_bounds(estimated_fare: float, negotiation_range: float) -> tuple[float, float]:
    """Return ``(floor, ceiling)`` for the passenger's proposal slider."""
    if estimated_fare <= 0:
        raise InvalidFare("Estimated fare must be positive")
    if not 0 <= negotiation_range < 1:
        raise InvalidFare("Negotiation range must be within [0, 1)")
    return estimated_fare * (1 - negotiation_range), estimated_fare


def validate_proposal(
    proposed_fare: float, estimated_fare: float, negotiation_range: float
) -> None:
    low, high = proposal_bounds(estimated_fare, negotiation_range)
    if proposed_fare > high + _EPSILON:
        raise InvalidFare(
            f"Proposed fare {proposed_fare:.2f} exceeds the estimate {high:.2f}"
        )
    if proposed_fare < low - _EPSILON:
        raise InvalidFare(
            f"Proposed fare {proposed_fare:.2f} is below the minimum {low:.2f}"
        )


def counterpart_envelope(
    estimated_fare: float, min_factor: float = 0.90, max_factor: float = 1.20
) -> tuple[float, float]:
    return estimated_fare * min_factor, estimated_fare * max_factor


# ── Arbitration ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class ArbitrationResult:
    decision: NegotiationDecision
    reason: str = ""
    counter_fare: Optional[float] = None

    @classmethod
    def from_payload(cls, payload: dict) -> "ArbitrationResult":
        """Parse the collaborator's JSON reply; unknown decisions count as rejection."""
        try:
            decision = NegotiationDecision(payload.get("decision"))
        except ValueError:
            decision = NegotiationDecision.REJECTED
        counter = payload.get("counterFare", payload.get("counter_fare"))
        return cls(
            decision=decision,
            reason=str(payload.get("reason") or ""),
            counter_fare=float(counter) if counter is not None else None,
        )


class Arbitrator(Protocol):
    async def negotiate(
        self,
        estimated_fare: float,
        proposed_fare: float,
        min_fare: float,
        max_fare: float,
    ) -> ArbitrationResult: ...


class EnvelopeArbitrator:
    """Deterministic counterpart used when no arbitration service is configured.

    Accepts anything inside the counterpart envelope, counters at the
    envelope floor for proposals inside the passenger band, rejects the rest.
    """

    def __init__(self, negotiation_range: float = 0.20):
        self.negotiation_range = negotiation_range

    async def negotiate(
        self,
        estimated_fare: float,
        proposed_fare: float,
        min_fare: float,
        max_fare: float,
    ) -> ArbitrationResult:
        if min_fare - _EPSILON <= proposed_fare <= max_fare + _EPSILON:
            return ArbitrationResult(
                NegotiationDecision.ACCEPTED, "La tarifa propuesta es aceptable."
            )
        if proposed_fare >= estimated_fare * (1 - self.negotiation_range) - _EPSILON:
            return ArbitrationResult(
                NegotiationDecision.COUNTER_OFFER,
                "La tarifa es muy baja, te propongo una alternativa.",
                counter_fare=round(min_fare, 2),
            )
        return ArbitrationResult(
            NegotiationDecision.REJECTED, "La tarifa propuesta es demasiado baja."
        )


# ── Negotiation session ───────────────────────────────────────────────


class NegotiationPhase(str, enum.Enum):
    IDLE = "idle"
    NEGOTIATING = "negotiating"
    PROCESSING = "processing"
    COUNTER_OFFER = "counter-offer"
    AGREED = "agreed"


@dataclass(frozen=True)
class NegotiationOutcome:
    final_fare: float
    breakdown: FareBreakdown


class FareNegotiation:
    def __init__(
        self,
        arbitrator: Arbitrator,
        negotiation_range: float = 0.20,
        min_factor: float = 0.90,
        max_factor: float = 1.20,
    ):
        self.arbitrator = arbitrator
        self.negotiation_range = negotiation_range
        self.min_factor = min_factor
        self.max_factor = max_factor
        self.failure_reason: Optional[str] = None
        self._reset()

    def _reset(self) -> None:
        self.phase = NegotiationPhase.IDLE
        self.estimate: Optional[FareEstimate] = None
        self.proposed_fare: Optional[float] = None
        self.counter_fare: Optional[float] = None
        self.last_response: Optional[ArbitrationResult] = None

    @property
    def bounds(self) -> tuple[float, float]:
        if self.estimate is None:
            raise InvalidStateTransition("Negotiation has not started")
        return proposal_bounds(self.estimate.estimated_fare, self.negotiation_range)

    def start(self, estimate: FareEstimate) -> tuple[float, float]:
        """Open a negotiation; the initial proposal is the full estimate."""
        bounds = proposal_bounds(estimate.estimated_fare, self.negotiation_range)
        self._reset()
        self.failure_reason = None
        self.estimate = estimate
        self.proposed_fare = estimate.estimated_fare
        self.phase = NegotiationPhase.NEGOTIATING
        return bounds

    async def propose(self, proposed_fare: float) -> Optional[NegotiationOutcome]:
        """Submit a proposal.  Returns the outcome when the counterpart accepts."""
        if self.phase is not NegotiationPhase.NEGOTIATING or self.estimate is None:
            raise InvalidStateTransition(f"Cannot propose while {self.phase.value}")
        estimated = self.estimate.estimated_fare
        validate_proposal(proposed_fare, estimated, self.negotiation_range)

        self.proposed_fare = proposed_fare
        self.phase = NegotiationPhase.PROCESSING
        min_fare, max_fare = counterpart_envelope(
            estimated, self.min_factor, self.max_factor
        )
        try:
            result = await self.arbitrator.negotiate(
                estimated, proposed_fare, min_fare, max_fare
            )
        except ExternalServiceError as exc:
            logger.warning("Fare arbitration failed: %s", exc)
            self._fail("La negociación falló. Por favor, inténtalo de nuevo.")
            return None

        self.last_response = result
        if result.decision is NegotiationDecision.ACCEPTED:
            return self._agree(proposed_fare)
        if (
            result.decision is NegotiationDecision.COUNTER_OFFER
            and result.counter_fare is not None
            and result.counter_fare > 0
        ):
            self.counter_fare = result.counter_fare
            self.phase = NegotiationPhase.COUNTER_OFFER
            return None
        self._fail(result.reason or "No pudimos acordar una tarifa.")
        return None

    def accept_counter_offer(self) -> NegotiationOutcome:
        if self.phase is not NegotiationPhase.COUNTER_OFFER or self.counter_fare is None:
            raise InvalidStateTransition("There is no counter-offer to accept")
        return self._agree(self.counter_fare)

    def cancel(self) -> None:
        self._reset()

    def _agree(self, fare: float) -> NegotiationOutcome:
        assert self.estimate is not None
        outcome = NegotiationOutcome(
            final_fare=round(fare, 2),
            breakdown=self.estimate.breakdown.with_total(fare),
        )
        self.phase = NegotiationPhase.AGREED
        return outcome

    def _fail(self, reason: str) -> None:
        self._reset()
        self.failure_reason = reason
