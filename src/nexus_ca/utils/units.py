"""Decimal scaling and address helpers shared by both network families."""

from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal
from typing import Union

from tronpy.keys import to_base58check_address, to_hex_address

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
ZERO_ADDRESS_32 = "0x" + "00" * 32
NATIVE_MARKER = "0xeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeee"

MAX_UINT256 = 2**256 - 1

Numeric = Union[Decimal, int, str]


def mul_decimals(amount: Numeric, decimals: int) -> int:
    """Scale a human amount to raw integer units, rounding up."""
    scaled = Decimal(str(amount)) * (Decimal(10) ** decimals)
    return int(scaled.to_integral_value(rounding=ROUND_CEILING))


def div_decimals(raw: Union[int, str], decimals: int) -> Decimal:
    """Scale raw integer units down to a human amount."""
    return Decimal(int(raw)) / (Decimal(10) ** decimals)


def round_up(amount: Decimal, decimals: int) -> Decimal:
    """Round a human amount up to the given token precision."""
    return amount.quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_CEILING)


def pct_addition(value: int, pct: float) -> int:
    """Add a percentage buffer to an integer quantity."""
    extra = (Decimal(value) * Decimal(str(pct))).to_integral_value(rounding=ROUND_HALF_UP)
    return value + int(extra)


def equal_fold(a: str, b: str) -> bool:
    return a.lower() == b.lower()


def to_32_bytes_hex(address: str) -> str:
    """Left-pad a hex address to 32 bytes."""
    body = address[2:] if address.startswith("0x") else address
    return "0x" + body.lower().rjust(64, "0")


def to_32_bytes(value: Union[int, str]) -> bytes:
    """Encode a chain id or hex address as 32 big-endian bytes."""
    if isinstance(value, int):
        return value.to_bytes(32, "big")
    return bytes.fromhex(to_32_bytes_hex(value)[2:])


def from_32_bytes_hex(value: str) -> str:
    """Take the low 20 bytes of a 32-byte hex word as an address."""
    return "0x" + value[-40:].lower()


def is_native_address(universe: str, address: str) -> bool:
    """Check whether an address is the native-currency marker."""
    addr = address.lower()
    if addr in (ZERO_ADDRESS, ZERO_ADDRESS_32):
        return True
    if universe == "EVM" and addr == NATIVE_MARKER:
        return True
    return False


def tron_hex_to_evm(address: str) -> str:
    """Convert a Tron address (base58 or 41-prefixed hex) to 0x form."""
    if not address.startswith("41") or len(address) != 42:
        address = to_hex_address(address)
    return "0x" + address[2:].lower()


def evm_to_tron_hex(address: str) -> str:
    """Convert a 0x address to 41-prefixed Tron hex."""
    return "41" + address[2:].lower()


def evm_to_tron_base58(address: str) -> str:
    return to_base58check_address(evm_to_tron_hex(address))
