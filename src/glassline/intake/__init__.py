"""Intake adapter: raw events to uniform envelopes."""

from glassline.intake.adapter import (
    RAW_SCHEMA,
    ENVELOPE_SCHEMA,
    PROPERTY_KEYS,
    Envelope,
    to_envelope,
    IntakeFunction,
)

__all__ = [
    'RAW_SCHEMA',
    'ENVELOPE_SCHEMA',
    'PROPERTY_KEYS',
    'Envelope',
    'to_envelope',
    'IntakeFunction',
]
