"""Hardware variant detection from the coding voltage divider."""

from __future__ import annotations

from evccs.runtime import Parameters

TOLERANCE = 30
UNKNOWN_VARIANT = 999

# ADC reading of the coding divider for each board revision.
_VARIANTS = (
    (718, 4002),
    (833, 4003),
    (991, 4004),
    (1134, 4005),
)


def is_near(x: int, y: int) -> bool:
    """True if x lies strictly within TOLERANCE steps of y."""
    return (x + TOLERANCE) > y and x < (y + TOLERANCE)


def hardware_variant_from_adc(adc: int) -> int:
    """Map the raw ADC value to a variant number, or UNKNOWN_VARIANT."""
    variant = UNKNOWN_VARIANT
    for reference, number in _VARIANTS:
        if is_near(adc, reference):
            variant = number
    return variant


def evaluate_hardware_variant(params: Parameters, adc: int) -> int:
    """Store the raw ADC value and the detected variant; return the variant."""
    params.adc_hw_variant = adc
    variant = hardware_variant_from_adc(adc)
    params.hardware_variant = variant
    return variant