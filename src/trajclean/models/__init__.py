"""Pydantic models for cleaning profiles and stage parameters."""

from .profile import (
    AnomalyParams,
    CleaningProfile,
    HeaderStandardizerParams,
    QuaternionParams,
    ResequencerParams,
    SizeFilterParams,
    StaticFlightParams,
    StaticSampleParams,
    StaticStartParams,
    check_stage_order,
)

__all__ = [
    "AnomalyParams",
    "CleaningProfile",
    "HeaderStandardizerParams",
    "QuaternionParams",
    "ResequencerParams",
    "SizeFilterParams",
    "StaticFlightParams",
    "StaticSampleParams",
    "StaticStartParams",
    "check_stage_order",
]
