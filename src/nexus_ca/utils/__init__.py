"""Utility modules for the settlement client."""

from nexus_ca.utils.units import (
    div_decimals,
    equal_fold,
    is_native_address,
    mul_decimals,
    pct_addition,
    to_32_bytes_hex,
)

__all__ = [
    "div_decimals",
    "equal_fold",
    "is_native_address",
    "mul_decimals",
    "pct_addition",
    "to_32_bytes_hex",
]
