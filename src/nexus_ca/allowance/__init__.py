"""Vault allowances: permits, sponsored approvals and on-chain approves."""

from nexus_ca.allowance.orchestrator import (
    AllowanceOrchestrator,
    AllowancePath,
    PermitRequirement,
    allowance_path,
    resolve_allowances,
)
from nexus_ca.allowance.permit import build_permit_typed_data, split_signature

__all__ = [
    "AllowanceOrchestrator",
    "AllowancePath",
    "PermitRequirement",
    "allowance_path",
    "build_permit_typed_data",
    "resolve_allowances",
    "split_signature",
]
