"""Shared document models."""

from clinic_emr.models.counter import Counter, next_sequence

__all__ = ["Counter", "next_sequence"]
