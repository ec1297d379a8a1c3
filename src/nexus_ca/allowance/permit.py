"""EIP-712 permit messages for the supported permit variants.

Every builder returns a full_message dict accepted by
eth_account's Account.sign_typed_data.
"""

from typing import Any

from web3 import Web3

from nexus_ca import abi
from nexus_ca.chains import PermitVariant
from nexus_ca.errors import Errors
from nexus_ca.utils.units import MAX_UINT256, to_32_bytes, to_32_bytes_hex

EIP712_DOMAIN = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

# Polygon bridged tokens put the chain id in the salt
SALT_DOMAIN = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "verifyingContract", "type": "address"},
    {"name": "salt", "type": "bytes32"},
]

PERMIT_2612 = [
    {"name": "owner", "type": "address"},
    {"name": "spender", "type": "address"},
    {"name": "value", "type": "uint256"},
    {"name": "nonce", "type": "uint256"},
    {"name": "deadline", "type": "uint256"},
]

PERMIT_DAI = [
    {"name": "holder", "type": "address"},
    {"name": "spender", "type": "address"},
    {"name": "nonce", "type": "uint256"},
    {"name": "expiry", "type": "uint256"},
    {"name": "allowed", "type": "bool"},
]

META_TRANSACTION = [
    {"name": "nonce", "type": "uint256"},
    {"name": "from", "type": "address"},
    {"name": "functionSignature", "type": "bytes"},
]

# Relay-side operation variants
SPONSORED_VARIANT_PERMIT = 1
SPONSORED_VARIANT_META_TX = 2


def build_permit_typed_data(
    variant: PermitVariant,
    *,
    chain_id: int,
    token_address: str,
    token_name: str,
    version: int,
    owner: str,
    spender: str,
    value: int,
    nonce: int,
    deadline: int = MAX_UINT256,
) -> dict[str, Any]:
    """Typed data granting spender an allowance of value over token."""
    token = Web3.to_checksum_address(token_address)
    owner = Web3.to_checksum_address(owner)
    spender = Web3.to_checksum_address(spender)

    if variant == PermitVariant.EIP2612_CANONICAL:
        return {
            "types": {"EIP712Domain": EIP712_DOMAIN, "Permit": PERMIT_2612},
            "primaryType": "Permit",
            "domain": {
                "name": token_name,
                "version": str(version),
                "chainId": chain_id,
                "verifyingContract": token,
            },
            "message": {
                "owner": owner,
                "spender": spender,
                "value": value,
                "nonce": nonce,
                "deadline": deadline,
            },
        }

    dai_message = {
        "holder": owner,
        "spender": spender,
        "nonce": nonce,
        "expiry": deadline,
        "allowed": True,
    }

    if variant == PermitVariant.DAI:
        return {
            "types": {"EIP712Domain": EIP712_DOMAIN, "Permit": PERMIT_DAI},
            "primaryType": "Permit",
            "domain": {
                "name": token_name,
                "version": str(version),
                "chainId": chain_id,
                "verifyingContract": token,
            },
            "message": dai_message,
        }

    salt_domain = {
        "name": token_name,
        "version": str(version),
        "verifyingContract": token,
        "salt": to_32_bytes(chain_id),
    }

    if variant == PermitVariant.POLYGON_2612:
        return {
            "types": {"EIP712Domain": SALT_DOMAIN, "Permit": PERMIT_DAI},
            "primaryType": "Permit",
            "domain": salt_domain,
            "message": dai_message,
        }

    if variant == PermitVariant.POLYGON_EMT:
        calldata = abi.encode_approve(spender, value)
        return {
            "types": {"EIP712Domain": SALT_DOMAIN, "MetaTransaction": META_TRANSACTION},
            "primaryType": "MetaTransaction",
            "domain": salt_domain,
            "message": {
                "nonce": nonce,
                "from": owner,
                "functionSignature": bytes.fromhex(calldata[2:]),
            },
        }

    raise Errors.internal("token has no permit support", variant=variant.value, token=token_address)


def split_signature(signature: str) -> tuple[str, str, int]:
    """Split a 65-byte hex signature into (r, s, v) with v in {27, 28}."""
    raw = bytes.fromhex(signature.removeprefix("0x"))
    if len(raw) != 65:
        raise Errors.internal("unexpected signature length", length=len(raw))
    v = raw[64]
    if v < 27:
        v += 27
    return "0x" + raw[:32].hex(), "0x" + raw[32:64].hex(), v


def sponsored_operation(
    variant: PermitVariant,
    token_address: str,
    value: int,
    signature: str,
) -> dict[str, Any]:
    r, s, v = split_signature(signature)
    return {
        "sig_r": r,
        "sig_s": s,
        "sig_v": v,
        "token_address": to_32_bytes_hex(token_address),
        "value": str(value),
        "variant": (
            SPONSORED_VARIANT_META_TX
            if variant == PermitVariant.POLYGON_EMT
            else SPONSORED_VARIANT_PERMIT
        ),
    }
