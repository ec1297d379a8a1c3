"""Settlement requests: build, sign, submit, deposit and wait for the fill."""

from nexus_ca.settlement.collection import wait_for_collections
from nexus_ca.settlement.deposit import DepositSender
from nexus_ca.settlement.fulfilment import FulfilmentResult, wait_for_fulfilment
from nexus_ca.settlement.handler import BridgeHandler, BridgeResult
from nexus_ca.settlement.request import (
    RequestSignature,
    SettlementRequest,
    build_request,
    sign_request,
)

__all__ = [
    "BridgeHandler",
    "BridgeResult",
    "DepositSender",
    "FulfilmentResult",
    "RequestSignature",
    "SettlementRequest",
    "build_request",
    "sign_request",
    "wait_for_collections",
    "wait_for_fulfilment",
]
