"""
HTTP clients for the generative-text collaborators.

* ``HttpArbitrator``         -- fare arbitration: ``negotiate(E, P, min, max)``
* ``HttpSentimentClassifier`` -- review sentiment: ``classify(comment)``

Both raise ``ExternalServiceError`` on timeouts, non-2xx replies or
malformed payloads; callers decide the fallback (terminal negotiation
failure, ``neutral`` sentiment).
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from rideoffer.config import Settings
from rideoffer.domain.enums import Sentiment
from rideoffer.domain.errors import ExternalServiceError
from rideoffer.domain.negotiation import (
    ArbitrationResult,
    Arbitrator,
    EnvelopeArbitrator,
)

logger = logging.getLogger(__name__)


async def _post_json(url: str, payload: dict, timeout: float) -> dict:
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.post(url, json=payload)
    except httpx.TimeoutException as exc:
        raise ExternalServiceError(f"Timeout calling {url}") from exc
    except httpx.HTTPError as exc:
        raise ExternalServiceError(f"Error calling {url}: {exc}") from exc

    if resp.status_code != 200:
        raise ExternalServiceError(f"{url} returned {resp.status_code}")
    try:
        data = resp.json()
    except ValueError as exc:
        raise ExternalServiceError(f"{url} returned invalid JSON") from exc
    if not isinstance(data, dict):
        raise ExternalServiceError(f"{url} returned an unexpected payload")
    return data


class HttpArbitrator:
    def __init__(self, url: str, timeout: float = 8.0):
        self.url = url
        self.timeout = timeout

    async def negotiate(
        self,
        estimated_fare: float,
        proposed_fare: float,
        min_fare: float,
        max_fare: float,
    ) -> ArbitrationResult:
        data = await _post_json(
            self.url,
            {
                "estimatedFare": estimated_fare,
                "proposedFare": proposed_fare,
                "minFare": min_fare,
                "maxFare": max_fare,
            },
            self.timeout,
        )
        try:
            return ArbitrationResult.from_payload(data)
        except (TypeError, ValueError) as exc:
            raise ExternalServiceError("Malformed arbitration reply") from exc


class SentimentClassifier:
    async def classify(self, comment: str) -> Sentiment:
        raise NotImplementedError


class NeutralSentimentClassifier(SentimentClassifier):
    """Used when no classification service is configured."""

    async def classify(self, comment: str) -> Sentiment:
        return Sentiment.NEUTRAL


class HttpSentimentClassifier(SentimentClassifier):
    def __init__(self, url: str, timeout: float = 8.0):
        self.url = url
        self.timeout = timeout

    async def classify(self, comment: str) -> Sentiment:
        data = await _post_json(self.url, {"comment": comment}, self.timeout)
        label = str(data.get("sentiment", "")).strip().lower()
        try:
            return Sentiment(label)
        except ValueError as exc:
            raise ExternalServiceError(f"Unknown sentiment label {label!r}") from exc


def build_arbitrator(settings: Settings) -> Arbitrator:
    if settings.arbitration_url:
        return HttpArbitrator(settings.arbitration_url, settings.external_timeout_seconds)
    return EnvelopeArbitrator(settings.negotiation_range)


def build_sentiment_classifier(settings: Settings) -> SentimentClassifier:
    url: Optional[str] = settings.sentiment_url
    if url:
        return HttpSentimentClassifier(url, settings.external_timeout_seconds)
    return NeutralSentimentClassifier()
