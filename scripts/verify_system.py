#!/usr/bin/env python3
"""Quick verification script for the client's configuration and components."""

import asyncio
import sys
from decimal import Decimal

# Colors for output
GREEN = "\033[92m"
RED = "\033[91m"
YELLOW = "\033[93m"
RESET = "\033[0m"
CHECK = "✓"
CROSS = "✗"
WARN = "⚠"


def print_status(name: str, success: bool, message: str = ""):
    """Print status with color."""
    if success:
        print(f"  {GREEN}{CHECK}{RESET} {name}" + (f" - {message}" if message else ""))
    else:
        print(f"  {RED}{CROSS}{RESET} {name}" + (f" - {message}" if message else ""))


def print_warning(name: str, message: str = ""):
    """Print warning."""
    print(f"  {YELLOW}{WARN}{RESET} {name}" + (f" - {message}" if message else ""))


def test_imports():
    """Test all critical imports."""
    print("\n📚 Testing Critical Imports...")

    modules = [
        ("nexus_ca.client", "Client"),
        ("nexus_ca.intent", "Intent builder"),
        ("nexus_ca.allowance", "Allowance orchestrator"),
        ("nexus_ca.settlement", "Settlement pipeline"),
        ("nexus_ca.optimizer", "Execute optimizer"),
        ("nexus_ca.gas", "Gas recommender"),
        ("nexus_ca.rpc.tron", "Tron reader"),
    ]

    all_ok = True
    for module, name in modules:
        try:
            __import__(module)
            print_status(name, True)
        except Exception as e:
            print_status(name, False, str(e)[:50])
            all_ok = False

    return all_ok


def test_config():
    """Test configuration and the chain registry."""
    print("\n⚙️ Testing Configuration...")

    try:
        from nexus_ca.chains import build_registry
        from nexus_ca.config import get_settings

        settings = get_settings()
        print_status("Load settings", True, settings.environment)
        print_status("Relay URL", bool(settings.relay_url), settings.relay_url)

        registry = build_registry(settings)
        print_status("Chain registry", len(registry) > 0, f"{len(registry)} chains")

        missing = [c.name for c in registry if not c.vault_address]
        if missing:
            print_warning("Vault addresses", f"not configured for {', '.join(missing)}")
        else:
            print_status("Vault addresses", True)

        return True
    except Exception as e:
        print_status("Configuration", False, str(e))
        return False


async def test_signing():
    """Test permit and request signing with a simulated wallet."""
    print("\n🔑 Testing Signing...")

    try:
        from nexus_ca.allowance import build_permit_typed_data, split_signature
        from nexus_ca.chains import PermitVariant
        from nexus_ca.wallet.simulated import SimulatedTronWallet, SimulatedWalletProvider

        wallet = SimulatedWalletProvider()
        typed_data = build_permit_typed_data(
            PermitVariant.EIP2612_CANONICAL,
            chain_id=10,
            token_address="0x0b2c639c533813f4aa9d7837caf62653d097ff85",
            token_name="USD Coin",
            version=2,
            owner=wallet.address,
            spender="0x000000000000000000000000000000000000dEaD",
            value=10**6,
            nonce=0,
        )
        signature = await wallet.sign_typed_data(typed_data)
        _, _, v = split_signature(signature)
        print_status("EIP-2612 permit", v in (27, 28), f"v={v}")

        tron = SimulatedTronWallet()
        print_status("Tron wallet", tron.address.startswith("T"), tron.address)

        return True
    except Exception as e:
        print_status("Signing", False, str(e))
        return False


def test_intent():
    """Test the fee waterfall on a fixed balance snapshot."""
    print("\n💧 Testing Fee Waterfall...")

    try:
        from nexus_ca.balances import Asset, AssetBreakdown
        from nexus_ca.chains import Universe, build_registry
        from nexus_ca.intent import DestinationRequest, IntentBuilder

        registry = build_registry()
        chains = [c for c in registry.evm_chains() if c.chain_id in (10, 8453, 42161)]
        breakdown = tuple(
            AssetBreakdown(
                chain_id=c.chain_id,
                chain_name=c.name,
                universe=c.universe,
                contract_address=registry.get_chain_and_token(c.chain_id, "USDC")[1].contract_address,
                decimals=6,
                balance=Decimal("60"),
            )
            for c in chains
        )
        intent = IntentBuilder(registry).build(
            DestinationRequest(42161, "USDC", Decimal("100")),
            [Asset("USDC", 6, breakdown)],
            {Universe.EVM: "0x000000000000000000000000000000000000dEaD"},
        )
        sources = ", ".join(f"{s.chain_name}:{s.amount}" for s in intent.sources)
        print_status("Intent for 100 USDC", not intent.insufficient_balance, sources)

        return True
    except Exception as e:
        print_status("Fee waterfall", False, str(e))
        return False


async def test_relay():
    """Test relay reachability."""
    print("\n🌐 Testing Relay...")

    try:
        from nexus_ca.relay import RelayClient

        relay = RelayClient()
        fees = await relay.get_fee_store()
        print_status("Fee schedule", True, f"protocol fee {fees.protocol_fee_bp} bp")
        return True
    except Exception as e:
        print_warning("Relay", str(e)[:80])
        return False


async def main():
    """Run all verification checks."""
    print("=" * 60)
    print("     NEXUS CLIENT VERIFICATION")
    print("=" * 60)

    results = {}

    results["imports"] = test_imports()
    results["config"] = test_config()
    results["signing"] = await test_signing()
    results["fee_waterfall"] = test_intent()
    results["relay"] = await test_relay()

    # Summary
    print("\n" + "=" * 60)
    print("     SUMMARY")
    print("=" * 60)

    passed = sum(1 for v in results.values() if v)
    total = len(results)

    for name, success in results.items():
        status = f"{GREEN}{CHECK}{RESET}" if success else f"{RED}{CROSS}{RESET}"
        print(f"  {status} {name.replace('_', ' ').title()}")

    print()
    if passed == total:
        print(f"  {GREEN}All {total} checks passed!{RESET}")
        return 0
    else:
        print(f"  {YELLOW}{passed}/{total} checks passed{RESET}")
        return 1


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
