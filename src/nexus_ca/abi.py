"""Calldata encoding for ERC20/TRC20 tokens, permit tokens and the vault.

Selectors are derived with Web3.keccak and arguments packed with eth_abi,
so no contract objects (and no provider) are needed to build calldata.
"""

from eth_abi import decode, encode
from web3 import Web3

# ERC20
_BALANCE_OF = Web3.keccak(text="balanceOf(address)")[:4]
_ALLOWANCE = Web3.keccak(text="allowance(address,address)")[:4]
_APPROVE = Web3.keccak(text="approve(address,uint256)")[:4]
_TRANSFER = Web3.keccak(text="transfer(address,uint256)")[:4]
_NAME = Web3.keccak(text="name()")[:4]

# Permit tokens
_NONCES = Web3.keccak(text="nonces(address)")[:4]
_GET_NONCE = Web3.keccak(text="getNonce(address)")[:4]

# L1 gas oracle
_GET_L1_FEE = Web3.keccak(text="getL1Fee(bytes)")[:4]

# Vault
REQUEST_TUPLE = (
    "((uint8,uint256,bytes32,uint256)[],uint8,uint256,bytes32,"
    "(bytes32,uint256)[],uint256,uint256,(uint8,bytes32)[])"
)
REQUEST_FIELDS = [
    "(uint8,uint256,bytes32,uint256)[]",  # sources
    "uint8",  # destinationUniverse
    "uint256",  # destinationChainID
    "bytes32",  # recipientAddress
    "(bytes32,uint256)[]",  # destinations
    "uint256",  # nonce
    "uint256",  # expiry
    "(uint8,bytes32)[]",  # parties
]
_DEPOSIT = Web3.keccak(text=f"deposit({REQUEST_TUPLE},bytes,uint256)")[:4]
_REQUEST_STATE = Web3.keccak(text="requestState(bytes32)")[:4]

FULFILMENT_TOPIC = "0x" + Web3.keccak(text="Fulfilment(bytes32,address,address)").hex().removeprefix("0x")


def _hex(selector: bytes, payload: bytes = b"") -> str:
    return "0x" + (selector + payload).hex()


def encode_balance_of(owner: str) -> str:
    return _hex(_BALANCE_OF, encode(["address"], [Web3.to_checksum_address(owner)]))


def encode_allowance(owner: str, spender: str) -> str:
    return _hex(
        _ALLOWANCE,
        encode(
            ["address", "address"],
            [Web3.to_checksum_address(owner), Web3.to_checksum_address(spender)],
        ),
    )


def encode_approve(spender: str, amount: int) -> str:
    return _hex(_APPROVE, encode(["address", "uint256"], [Web3.to_checksum_address(spender), amount]))


def encode_transfer(recipient: str, amount: int) -> str:
    return _hex(_TRANSFER, encode(["address", "uint256"], [Web3.to_checksum_address(recipient), amount]))


def encode_name() -> str:
    return _hex(_NAME)


def encode_nonces(owner: str) -> str:
    return _hex(_NONCES, encode(["address"], [Web3.to_checksum_address(owner)]))


def encode_get_nonce(owner: str) -> str:
    return _hex(_GET_NONCE, encode(["address"], [Web3.to_checksum_address(owner)]))


def encode_get_l1_fee(serialized_tx: bytes) -> str:
    return _hex(_GET_L1_FEE, encode(["bytes"], [serialized_tx]))


def encode_request(request: tuple) -> bytes:
    """ABI-encode the settlement request fields as top-level parameters."""
    return encode(REQUEST_FIELDS, list(request))


def encode_deposit(request: tuple, signature: bytes, chain_index: int) -> str:
    return _hex(_DEPOSIT, encode([REQUEST_TUPLE, "bytes", "uint256"], [request, signature, chain_index]))


def encode_request_state(request_hash: bytes) -> str:
    return _hex(_REQUEST_STATE, encode(["bytes32"], [request_hash]))


def decode_uint(data: str) -> int:
    raw = bytes.fromhex(data.removeprefix("0x"))
    if not raw:
        return 0
    return decode(["uint256"], raw)[0]


def decode_string(data: str) -> str:
    raw = bytes.fromhex(data.removeprefix("0x"))
    if not raw:
        return ""
    return decode(["string"], raw)[0]
