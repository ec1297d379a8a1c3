"""Allowance orchestration for intent sources.

Each non-native source on a chain other than the destination needs the
vault to hold an allowance over the drawn amount. Tokens with a permit
variant get an off-chain signature, batched to the relay once; all others
(and every token on the approvals-only network) get an on-chain approve.
"""

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Awaitable, Callable, Optional, Union

from nexus_ca import abi
from nexus_ca.allowance.permit import build_permit_typed_data, sponsored_operation
from nexus_ca.chains import APPROVALS_ONLY_CHAIN_ID, ChainConfig, ChainRegistry, PermitVariant, Universe
from nexus_ca.config import Settings, get_settings
from nexus_ca.errors import Errors, UserRejectedError
from nexus_ca.intent import Intent, IntentSource
from nexus_ca.relay import RelayClient
from nexus_ca.rpc.evm import EvmRpcClient
from nexus_ca.rpc.tron import TronReader
from nexus_ca.steps import StepLedger
from nexus_ca.utils.units import (
    MAX_UINT256,
    div_decimals,
    evm_to_tron_base58,
    mul_decimals,
    to_32_bytes_hex,
    tron_hex_to_evm,
)
from nexus_ca.wallet.base import TxRequest, WalletConnection, restore_chain, switch_chain

logger = logging.getLogger(__name__)


class AllowancePath(str, Enum):
    PERMIT = "permit"
    ON_CHAIN = "on_chain"


def allowance_path(variant: PermitVariant, chain_id: int, universe: Universe = Universe.EVM) -> AllowancePath:
    """Pick how an allowance is granted for a token on a chain."""
    if (
        universe == Universe.TRON
        or variant == PermitVariant.UNSUPPORTED
        or chain_id == APPROVALS_ONLY_CHAIN_ID
    ):
        return AllowancePath.ON_CHAIN
    return AllowancePath.PERMIT


@dataclass(frozen=True)
class PermitRequirement:
    """A source whose current vault allowance is below the drawn amount."""

    chain_id: int
    chain_name: str
    universe: Universe
    token_address: str
    symbol: str
    decimals: int
    variant: PermitVariant
    permit_version: int
    current: int
    minimum: int

    @property
    def path(self) -> AllowancePath:
        return allowance_path(self.variant, self.chain_id, self.universe)

    def to_hook_source(self) -> dict:
        """Shape handed to the allowance hook."""
        return {
            "chain": {"id": self.chain_id, "name": self.chain_name},
            "token": {
                "symbol": self.symbol,
                "decimals": self.decimals,
                "contract_address": self.token_address,
            },
            "allowance": {
                "current": str(div_decimals(self.current, self.decimals)),
                "current_raw": self.current,
                "minimum": str(div_decimals(self.minimum, self.decimals)),
                "minimum_raw": self.minimum,
            },
        }


AllowanceValue = Union[str, int]


def resolve_allowances(requirements: list[PermitRequirement], decisions: list[AllowanceValue]) -> list[int]:
    """Turn per-source decisions into raw allowance amounts."""
    if len(decisions) != len(requirements):
        raise Errors.invalid_allowance(len(requirements), len(decisions))

    amounts = []
    for requirement, decision in zip(requirements, decisions):
        if isinstance(decision, int) and not isinstance(decision, bool):
            amounts.append(decision)
        elif decision == "max":
            amounts.append(MAX_UINT256)
        elif decision == "min":
            amounts.append(requirement.minimum)
        elif isinstance(decision, str):
            amounts.append(mul_decimals(Decimal(decision), requirement.decimals))
        else:
            raise Errors.internal("unrecognized allowance decision", decision=repr(decision))
    return amounts


class AllowanceOrchestrator:
    """Reads allowances and grants missing ones for an intent."""

    def __init__(
        self,
        registry: ChainRegistry,
        relay: RelayClient,
        connection: WalletConnection,
        settings: Optional[Settings] = None,
        rpc_factory: Optional[Callable[[ChainConfig], EvmRpcClient]] = None,
        tron_reader: Optional[TronReader] = None,
    ):
        self.registry = registry
        self.relay = relay
        self.connection = connection
        self.settings = settings or get_settings()
        self.rpc_factory = rpc_factory or (
            lambda chain: EvmRpcClient(chain.rpc_url, chain.chain_id, self.settings.http_timeout)
        )
        self._tron_reader = tron_reader

    def _tron(self, chain: ChainConfig) -> TronReader:
        if self._tron_reader is None:
            self._tron_reader = TronReader(self.settings.tron_api_url or chain.rpc_url)
        return self._tron_reader

    # ======================
    # Reads
    # ======================

    async def get_allowance(self, chain_id: int, token_address: str, owner: str) -> int:
        """Current allowance of owner toward the chain's vault."""
        chain = self.registry.get_chain(chain_id)
        token = self.registry.get_token_by_address(chain_id, token_address)
        if token.is_native:
            return MAX_UINT256

        vault = self.registry.get_vault_address(chain_id)
        if chain.is_tron:
            return await self._tron(chain).trc20_allowance(token.contract_address, owner, vault)
        return await self.rpc_factory(chain).erc20_allowance(token.contract_address, owner, vault)

    async def get_allowances(self, sources: list[IntentSource]) -> list[int]:
        return list(
            await asyncio.gather(
                *(self.get_allowance(s.chain_id, s.token_address, s.holder_address) for s in sources)
            )
        )

    async def permit_requirements(self, intent: Intent) -> list[PermitRequirement]:
        """Sources of intent that still need an allowance, in source order."""
        sources = [
            s for s in intent.sources
            if not s.is_native and s.chain_id != intent.destination.chain_id
        ]
        current = await self.get_allowances(sources)

        requirements = []
        for source, allowance in zip(sources, current):
            minimum = source.amount_raw
            if allowance >= minimum:
                continue
            token = self.registry.get_token_by_address(source.chain_id, source.token_address)
            requirements.append(
                PermitRequirement(
                    chain_id=source.chain_id,
                    chain_name=source.chain_name,
                    universe=source.universe,
                    token_address=source.token_address,
                    symbol=source.symbol,
                    decimals=source.decimals,
                    variant=token.permit_variant,
                    permit_version=token.permit_version,
                    current=allowance,
                    minimum=minimum,
                )
            )
        return requirements

    # ======================
    # Grants
    # ======================

    async def set_allowances(
        self,
        requirements: list[PermitRequirement],
        amounts: list[int],
        destination: ChainConfig,
        ledger: Optional[StepLedger] = None,
    ) -> None:
        """Grant every requirement, then restore the destination chain."""
        if len(amounts) != len(requirements):
            raise Errors.invalid_allowance(len(requirements), len(amounts))
        ledger = ledger or StepLedger()

        sponsored: list[tuple[PermitRequirement, dict]] = []
        pending: list[Callable[[], Awaitable[None]]] = []

        try:
            async with restore_chain(self.connection.evm, destination):
                for requirement, amount in zip(requirements, amounts):
                    chain = self.registry.get_chain(requirement.chain_id)
                    if requirement.path == AllowancePath.PERMIT:
                        sponsored.append((requirement, await self._sign_permit(chain, requirement, amount)))
                    elif chain.is_tron:
                        pending.append(await self._approve_tron(chain, requirement, amount, ledger))
                    else:
                        pending.append(await self._approve_evm(chain, requirement, amount, ledger))
                    ledger.complete(f"AUA_{requirement.chain_id}")

                if sponsored:
                    await self._submit_sponsored(sponsored, ledger)
                await asyncio.gather(*(wait() for wait in pending))
        except UserRejectedError as e:
            raise Errors.user_rejected_allowance(e) from e

        ledger.complete("AAD")
        logger.info(f"Allowances set on chains {[r.chain_id for r in requirements]}")

    async def _sign_permit(self, chain: ChainConfig, requirement: PermitRequirement, amount: int) -> dict:
        wallet = self.connection.evm
        if wallet is None:
            raise Errors.wallet_not_connected(Universe.EVM.value)

        owner = await self.connection.current_address()
        rpc = self.rpc_factory(chain)
        vault = self.registry.get_vault_address(chain.chain_id)
        meta_tx = requirement.variant == PermitVariant.POLYGON_EMT
        nonce, name = await asyncio.gather(
            rpc.permit_nonce(requirement.token_address, owner, meta_tx=meta_tx),
            rpc.erc20_name(requirement.token_address),
        )

        typed_data = build_permit_typed_data(
            requirement.variant,
            chain_id=chain.chain_id,
            token_address=requirement.token_address,
            token_name=name,
            version=requirement.permit_version,
            owner=owner,
            spender=vault,
            value=amount,
            nonce=nonce,
        )
        signature = await wallet.sign_typed_data(typed_data)
        logger.debug(f"Permit signed for {requirement.symbol} on {chain.name}")

        return {
            "address": to_32_bytes_hex(owner),
            "chain_id": chain.chain_id,
            "universe": chain.universe.value,
            "operations": [
                sponsored_operation(requirement.variant, requirement.token_address, amount, signature)
            ],
        }

    async def _submit_sponsored(
        self, sponsored: list[tuple[PermitRequirement, dict]], ledger: StepLedger
    ) -> None:
        await self.relay.create_sponsored_approvals([entry for _, entry in sponsored])
        for requirement, _ in sponsored:
            ledger.complete(f"AAM_{requirement.chain_id}")

    async def _approve_evm(
        self, chain: ChainConfig, requirement: PermitRequirement, amount: int, ledger: StepLedger
    ) -> Callable[[], Awaitable[None]]:
        """Send approve on chain; returns the receipt wait."""
        wallet = self.connection.evm
        if wallet is None:
            raise Errors.wallet_not_connected(Universe.EVM.value)

        await switch_chain(wallet, chain)
        vault = self.registry.get_vault_address(chain.chain_id)
        tx_hash = await wallet.send_transaction(
            TxRequest(
                to=requirement.token_address,
                data=abi.encode_approve(vault, amount),
                chain_id=chain.chain_id,
            )
        )
        logger.info(f"Approval sent on {chain.name}: {tx_hash}")

        async def mined() -> None:
            await self.rpc_factory(chain).wait_for_receipt(
                tx_hash,
                timeout=self.settings.receipt_timeout,
                poll_interval=self.settings.receipt_poll_interval,
            )
            ledger.complete(f"AAM_{chain.chain_id}")

        return mined

    async def _approve_tron(
        self, chain: ChainConfig, requirement: PermitRequirement, amount: int, ledger: StepLedger
    ) -> Callable[[], Awaitable[None]]:
        wallet = self.connection.tron
        if wallet is None:
            raise Errors.wallet_not_connected(Universe.TRON.value)

        vault = self.registry.get_vault_address(chain.chain_id)
        result = await wallet.trigger_contract(
            requirement.token_address,
            "approve",
            [evm_to_tron_base58(tron_hex_to_evm(vault)), amount],
        )
        if not result.get("result"):
            raise Errors.tron_approval_failed(result)

        async def confirmed() -> None:
            ok = await self._tron(chain).wait_for_allowance(
                requirement.token_address,
                wallet.address,
                vault,
                amount,
                timeout=self.settings.tron_poll_timeout,
                interval=self.settings.tron_poll_interval,
            )
            if not ok:
                raise Errors.tron_approval_failed(result)
            ledger.complete(f"AAM_{chain.chain_id}")

        return confirmed
