"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from rideoffer.domain.enums import (
    CancelledBy,
    DriverStatus,
    NegotiationDecision,
    PaymentMethod,
    RideStatus,
    Role,
    ServiceType,
    SOSStatus,
)


# ── Requests ──────────────────────────────────────────────────────────


class CouponRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=40)
    discount_type: str = Field("percentage", pattern="^(percentage|fixed)$")
    value: float = Field(..., gt=0)


class FareEstimateRequest(BaseModel):
    distance_km: float = Field(..., ge=0)
    duration_minutes: float = Field(..., ge=0)
    service_type: ServiceType = ServiceType.ECONOMY
    ride_date: Optional[datetime] = None
    peak_time: Optional[bool] = Field(
        None, description="Overrides the configured peak windows when set."
    )
    coupon: Optional[CouponRequest] = None


class FareNegotiateRequest(BaseModel):
    estimated_fare: float = Field(..., gt=0)
    proposed_fare: float = Field(..., gt=0)


class FareBreakdownBody(BaseModel):
    base_fare: float
    distance_cost: float
    duration_cost: float
    service_multiplier: float
    service_cost: float
    peak_surcharge: float
    special_day_surcharge: float
    coupon_discount: float
    subtotal: float
    total: float

    model_config = {"from_attributes": True}


class RideCreateRequest(BaseModel):
    pickup: str = Field(..., min_length=1, max_length=255)
    dropoff: str = Field(..., min_length=1, max_length=255)
    fare: float = Field(..., gt=0)
    fare_breakdown: Optional[FareBreakdownBody] = None
    service_type: ServiceType = ServiceType.ECONOMY
    payment_method: PaymentMethod = PaymentMethod.CASH
    coupon_code: Optional[str] = Field(None, max_length=40)


class CancelRequest(BaseModel):
    reason_code: str = Field(..., min_length=1)


class CounterOfferRequest(BaseModel):
    fare: float = Field(..., gt=0)


class AvailabilityRequest(BaseModel):
    available: bool


class StatusUpdateRequest(BaseModel):
    status: RideStatus


class MessageRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=1000)


class RatingRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)


# ── Responses ─────────────────────────────────────────────────────────


class FareEstimateResponse(BaseModel):
    estimated_fare: float
    breakdown: FareBreakdownBody
    min_fare: float
    max_fare: float


class FareNegotiateResponse(BaseModel):
    decision: NegotiationDecision
    reason: str = ""
    final_fare: Optional[float] = None
    counter_fare: Optional[float] = None


class CancellationBody(BaseModel):
    code: str
    reason: str

    model_config = {"from_attributes": True}


class RideResponse(BaseModel):
    id: str
    pickup: str
    dropoff: str
    fare: float
    fare_breakdown: Optional[FareBreakdownBody] = None
    service_type: ServiceType
    payment_method: PaymentMethod
    coupon_code: Optional[str] = None
    passenger_id: str
    driver_id: Optional[str] = None
    offered_to: Optional[str] = None
    offered_at: Optional[datetime] = None
    rejected_by: list[str] = []
    status: RideStatus
    cancellation: Optional[CancellationBody] = None
    cancelled_by: Optional[CancelledBy] = None
    date: Optional[datetime] = None
    assignment_timestamp: Optional[datetime] = None
    is_rated_by_passenger: bool = False
    is_rated_by_driver: bool = False

    model_config = {"from_attributes": True}


class DriverResponse(BaseModel):
    id: str
    name: str
    rating: float
    total_rides: int
    status: DriverStatus
    service_type: ServiceType

    model_config = {"from_attributes": True}


class ChatMessageResponse(BaseModel):
    id: Optional[int] = None
    ride_id: str
    sender_id: str
    sender_role: Role
    text: str
    timestamp: datetime

    model_config = {"from_attributes": True}


class SOSAlertResponse(BaseModel):
    id: Optional[int] = None
    ride_id: str
    passenger_id: str
    driver_id: Optional[str] = None
    triggered_by: Role
    status: SOSStatus
    date: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SweepResponse(BaseModel):
    released: int


class HealthResponse(BaseModel):
    status: str = "ok"
    searching_rides: int = 0


class ErrorResponse(BaseModel):
    detail: str
