"""Error types raised by the settlement client.

Every error carries a stable machine-readable code plus free-form context.
User-facing wording is left to the caller.
"""

from enum import Enum
from typing import Any, Optional


class ErrorCode(str, Enum):
    """Stable error codes."""

    # Configuration
    CHAIN_NOT_FOUND = "CHAIN_NOT_FOUND"
    TOKEN_NOT_SUPPORTED = "TOKEN_NOT_SUPPORTED"
    VAULT_CONTRACT_NOT_FOUND = "VAULT_CONTRACT_NOT_FOUND"
    ASSET_NOT_FOUND = "ASSET_NOT_FOUND"
    INVALID_VALUES_ALLOWANCE_HOOK = "INVALID_VALUES_ALLOWANCE_HOOK"
    SDK_NOT_INITIALIZED = "SDK_NOT_INITIALIZED"
    WALLET_NOT_CONNECTED = "WALLET_NOT_CONNECTED"

    # User declined
    USER_DENIED_INTENT = "USER_DENIED_INTENT"
    USER_DENIED_ALLOWANCE = "USER_DENIED_ALLOWANCE"
    USER_DENIED_INTENT_SIGNATURE = "USER_DENIED_INTENT_SIGNATURE"
    USER_DENIED_DEPOSIT = "USER_DENIED_DEPOSIT"
    USER_DENIED_EXECUTE = "USER_DENIED_EXECUTE"

    # Liquidity
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"

    # Counterparty / timeout
    LIQUIDITY_TIMEOUT = "LIQUIDITY_TIMEOUT"
    FETCH_GAS_PRICE_FAILED = "FETCH_GAS_PRICE_FAILED"
    RELAY_REQUEST_FAILED = "RELAY_REQUEST_FAILED"
    RFF_FEE_EXPIRED = "RFF_FEE_EXPIRED"

    # On-chain
    TRANSACTION_REVERTED = "TRANSACTION_REVERTED"
    TRANSACTION_TIMEOUT = "TRANSACTION_TIMEOUT"
    SIMULATION_FAILED = "SIMULATION_FAILED"
    TRON_DEPOSIT_FAIL = "TRON_DEPOSIT_FAIL"
    TRON_APPROVAL_FAIL = "TRON_APPROVAL_FAIL"

    INTERNAL_ERROR = "INTERNAL_ERROR"


_CATEGORIES: dict[str, set[ErrorCode]] = {
    "configuration": {
        ErrorCode.CHAIN_NOT_FOUND,
        ErrorCode.TOKEN_NOT_SUPPORTED,
        ErrorCode.VAULT_CONTRACT_NOT_FOUND,
        ErrorCode.ASSET_NOT_FOUND,
        ErrorCode.INVALID_VALUES_ALLOWANCE_HOOK,
        ErrorCode.SDK_NOT_INITIALIZED,
        ErrorCode.WALLET_NOT_CONNECTED,
    },
    "user_declined": {
        ErrorCode.USER_DENIED_INTENT,
        ErrorCode.USER_DENIED_ALLOWANCE,
        ErrorCode.USER_DENIED_INTENT_SIGNATURE,
        ErrorCode.USER_DENIED_DEPOSIT,
        ErrorCode.USER_DENIED_EXECUTE,
    },
    "liquidity": {ErrorCode.INSUFFICIENT_BALANCE},
    "counterparty": {
        ErrorCode.LIQUIDITY_TIMEOUT,
        ErrorCode.FETCH_GAS_PRICE_FAILED,
        ErrorCode.RELAY_REQUEST_FAILED,
        ErrorCode.RFF_FEE_EXPIRED,
    },
    "on_chain": {
        ErrorCode.TRANSACTION_REVERTED,
        ErrorCode.TRANSACTION_TIMEOUT,
        ErrorCode.SIMULATION_FAILED,
        ErrorCode.TRON_DEPOSIT_FAIL,
        ErrorCode.TRON_APPROVAL_FAIL,
    },
}


class NexusError(Exception):
    """Error raised by the settlement client.

    Attributes:
        code: Stable error code
        message: Free-form description
        context: Extra data (chain id, tx hash, ...)
        cause: Underlying exception, if any
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        context: Optional[dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        self.code = code
        self.message = message
        self.context = context or {}
        self.cause = cause
        super().__init__(f"[{code.value}] {message}")

    @property
    def category(self) -> str:
        for name, codes in _CATEGORIES.items():
            if self.code in codes:
                return name
        return "internal"

    @property
    def retryable(self) -> bool:
        """Whether rebuilding the intent and re-driving may succeed."""
        return self.category in ("counterparty", "liquidity")

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "category": self.category,
            "message": self.message,
            "context": self.context,
            "cause": repr(self.cause) if self.cause else None,
        }


class UserRejectedError(Exception):
    """Raised by a wallet provider when the user cancels a request."""

    pass


class Errors:
    """Factories for every error the client raises."""

    @staticmethod
    def chain_not_found(chain_id: int) -> NexusError:
        return NexusError(
            ErrorCode.CHAIN_NOT_FOUND, f"chain not found: {chain_id}", {"chain_id": chain_id}
        )

    @staticmethod
    def token_not_supported(symbol: str, chain_id: int) -> NexusError:
        return NexusError(
            ErrorCode.TOKEN_NOT_SUPPORTED,
            f"token {symbol} not supported on chain {chain_id}",
            {"symbol": symbol, "chain_id": chain_id},
        )

    @staticmethod
    def vault_contract_not_found(chain_id: int) -> NexusError:
        return NexusError(
            ErrorCode.VAULT_CONTRACT_NOT_FOUND,
            f"vault contract not found for chain {chain_id}",
            {"chain_id": chain_id},
        )

    @staticmethod
    def asset_not_found(symbol: str) -> NexusError:
        return NexusError(ErrorCode.ASSET_NOT_FOUND, f"asset {symbol} not found", {"symbol": symbol})

    @staticmethod
    def invalid_allowance(expected: int, got: int) -> NexusError:
        return NexusError(
            ErrorCode.INVALID_VALUES_ALLOWANCE_HOOK,
            f"invalid allowance decisions: expected {expected}, got {got}",
            {"expected": expected, "got": got},
        )

    @staticmethod
    def sdk_not_initialized() -> NexusError:
        return NexusError(ErrorCode.SDK_NOT_INITIALIZED, "client not initialized")

    @staticmethod
    def wallet_not_connected(universe: str) -> NexusError:
        return NexusError(
            ErrorCode.WALLET_NOT_CONNECTED, f"{universe} wallet not connected", {"universe": universe}
        )

    @staticmethod
    def insufficient_balance(required: Any = None, available: Any = None) -> NexusError:
        return NexusError(
            ErrorCode.INSUFFICIENT_BALANCE,
            "insufficient balance across eligible sources",
            {"required": str(required), "available": str(available)},
        )

    @staticmethod
    def user_rejected_intent() -> NexusError:
        return NexusError(ErrorCode.USER_DENIED_INTENT, "user rejected the intent")

    @staticmethod
    def user_rejected_allowance(cause: Optional[BaseException] = None) -> NexusError:
        return NexusError(ErrorCode.USER_DENIED_ALLOWANCE, "user rejected the allowance", cause=cause)

    @staticmethod
    def user_rejected_intent_signature(cause: Optional[BaseException] = None) -> NexusError:
        return NexusError(
            ErrorCode.USER_DENIED_INTENT_SIGNATURE, "user rejected signing the intent", cause=cause
        )

    @staticmethod
    def user_rejected_deposit(cause: Optional[BaseException] = None) -> NexusError:
        return NexusError(ErrorCode.USER_DENIED_DEPOSIT, "user rejected the deposit", cause=cause)

    @staticmethod
    def user_rejected_execute(cause: Optional[BaseException] = None) -> NexusError:
        return NexusError(
            ErrorCode.USER_DENIED_EXECUTE, "user rejected the destination transaction", cause=cause
        )

    @staticmethod
    def liquidity_timeout(stage: str, **context: Any) -> NexusError:
        return NexusError(ErrorCode.LIQUIDITY_TIMEOUT, f"timed out waiting for {stage}", context)

    @staticmethod
    def rff_fee_expired(request_hash: str) -> NexusError:
        return NexusError(
            ErrorCode.RFF_FEE_EXPIRED,
            "fee quote expired before collection, rebuild the intent",
            {"request_hash": request_hash},
        )

    @staticmethod
    def gas_price_error(chain_id: int) -> NexusError:
        return NexusError(
            ErrorCode.FETCH_GAS_PRICE_FAILED,
            f"gas price resolved to zero on chain {chain_id}",
            {"chain_id": chain_id},
        )

    @staticmethod
    def relay_error(message: str, status: Optional[int] = None, body: Any = None) -> NexusError:
        return NexusError(
            ErrorCode.RELAY_REQUEST_FAILED, message, {"status": status, "body": body}
        )

    @staticmethod
    def tron_deposit_failed(result: Any) -> NexusError:
        return NexusError(ErrorCode.TRON_DEPOSIT_FAIL, "tron deposit failed", {"result": result})

    @staticmethod
    def tron_approval_failed(result: Any) -> NexusError:
        return NexusError(ErrorCode.TRON_APPROVAL_FAIL, "tron approval failed", {"result": result})

    @staticmethod
    def transaction_reverted(tx_hash: str, chain_id: Optional[int] = None) -> NexusError:
        return NexusError(
            ErrorCode.TRANSACTION_REVERTED,
            f"transaction reverted: {tx_hash}",
            {"tx_hash": tx_hash, "chain_id": chain_id},
        )

    @staticmethod
    def transaction_timeout(tx_hash: str, chain_id: Optional[int] = None) -> NexusError:
        return NexusError(
            ErrorCode.TRANSACTION_TIMEOUT,
            f"no confirmation observed for {tx_hash}",
            {"tx_hash": tx_hash, "chain_id": chain_id},
        )

    @staticmethod
    def simulation_failed(message: str, chain_id: Optional[int] = None) -> NexusError:
        return NexusError(ErrorCode.SIMULATION_FAILED, message, {"chain_id": chain_id})

    @staticmethod
    def internal(message: str, **context: Any) -> NexusError:
        return NexusError(ErrorCode.INTERNAL_ERROR, message, context)
