"""RPC clients for EVM and Tron networks."""

from nexus_ca.rpc.evm import EvmRpcClient, RpcError
from nexus_ca.rpc.tron import TronReader

__all__ = ["EvmRpcClient", "RpcError", "TronReader"]
