"""
modules/errors.py
-----------------
Failure taxonomy for the engine.

Runtime failures never escape a component boundary: each component catches
its collaborator's exception and returns a usable partial result carrying
one of the ReasonCode values below.  The only fatal error is missing
credentials at startup (MissingCredentialsError).
"""

from __future__ import annotations
from enum import Enum


class ReasonCode(str, Enum):
    RETRIEVAL_UNAVAILABLE    = "RETRIEVAL_UNAVAILABLE"     # similarity / embeddings down → token search
    TRAFFIC_UNKNOWN          = "TRAFFIC_UNKNOWN"           # missing / timeout → SEVERE, excluded
    WEATHER_UNAVAILABLE      = "WEATHER_UNAVAILABLE"       # last-known or benign default
    SCHEDULING_INFEASIBLE    = "SCHEDULING_INFEASIBLE"     # partial day returned
    BUDGET_INFEASIBLE        = "BUDGET_INFEASIBLE"         # best-effort subset + advisory
    DRAFTING_MALFORMED_OUTPUT = "DRAFTING_MALFORMED_OUTPUT"  # layered decode recovery


class EngineError(Exception):
    """Base class; ``reason`` is the ReasonCode surfaced in degraded results."""
    reason: ReasonCode

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.reason.value)


class RetrievalUnavailable(EngineError):
    reason = ReasonCode.RETRIEVAL_UNAVAILABLE


class TrafficUnknown(EngineError):
    reason = ReasonCode.TRAFFIC_UNKNOWN


class WeatherUnavailable(EngineError):
    reason = ReasonCode.WEATHER_UNAVAILABLE


class DraftingMalformedOutput(EngineError):
    reason = ReasonCode.DRAFTING_MALFORMED_OUTPUT


class MissingCredentialsError(RuntimeError):
    """Raised at startup when a required API key is absent. Fatal."""
