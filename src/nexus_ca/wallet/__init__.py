"""Wallet providers and the shared wallet connection."""

from nexus_ca.wallet.base import (
    TronWallet,
    TxRequest,
    WalletConnection,
    WalletProvider,
    restore_chain,
    should_reinitialize,
    switch_chain,
)

__all__ = [
    "TronWallet",
    "TxRequest",
    "WalletConnection",
    "WalletProvider",
    "restore_chain",
    "should_reinitialize",
    "switch_chain",
]
