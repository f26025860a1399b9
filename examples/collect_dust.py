"""Collect Dust and Settle in One Batch Example.

This example deposits a few dust balances into the Dust Aggregator contract,
settles them with a single batch invocation and swaps the settled value into
a target asset.

Prerequisites:
1. pip install dust-aggregator-sdk[examples]
2. Set environment variables (see .env.example)
3. Fund the settlement account so it can pay the network fee

Usage:
    python collect_dust.py
"""

import asyncio
import logging
import os
from dotenv import load_dotenv

load_dotenv()


async def main():
    # Import here to show what's needed
    from dust_aggregator_sdk import (
        BalanceReading,
        BatchOrchestrator,
        BatchPhase,
        LocalAccountSigner,
        SignerRegistry,
        Succeeded,
        estimate_gas_savings,
        format_minor_units,
        per_participant_fee_share,
    )

    # Configuration from environment
    required = [
        "AGGREGATOR_CONTRACT_ADDRESS",
        "AGGREGATOR_NETWORK_ID",
        "AGGREGATOR_RPC_URL",
        "SETTLEMENT_PRIVATE_KEY",
    ]
    missing = [var for var in required if not os.environ.get(var)]
    if missing:
        print(f"Missing required environment variables: {', '.join(missing)}")
        print("See .env.example for required variables.")
        return

    logging.basicConfig(level=logging.INFO)

    signer = LocalAccountSigner(os.environ["SETTLEMENT_PRIVATE_KEY"])
    orchestrator = BatchOrchestrator(
        {
            "contract_address": os.environ["AGGREGATOR_CONTRACT_ADDRESS"],
            "network_id": int(os.environ["AGGREGATOR_NETWORK_ID"]),
            "rpc_url": os.environ["AGGREGATOR_RPC_URL"],
        },
        SignerRegistry(default=signer),
        listeners=[lambda state: print(f"    [{state.progress:3d}%] {state.phase.value}")],
    )

    print("=" * 60)
    print("  DUST AGGREGATOR BATCH")
    print("=" * 60)

    try:
        # Balances as reported by the chain readers
        readings = [
            BalanceReading("ethereum", "ETH", "0.00021", signer.address),
            BalanceReading("solana", "SOL", "0.003", "4Nd1mBQtrMJVYVfKf2PJy9NZUZdTAsp7D4xWLs4gDB4T"),
            BalanceReading("stellar", "XLM", "1.3", "GAHK7EEG2WWHVKDNT4CEQFZGKF2LGDSW2IVM4S5DP42RBW3K6BTODB4A"),
        ]

        print("\n[1] Normalizing balances...")
        items = orchestrator.normalize(readings)
        for item in items:
            print(f"    {item.source_chain:9s} {item.asset_id:5s} ${format_minor_units(item.minor_units)}")
        print(f"    Fee share per participant: {per_participant_fee_share(len(items)):.3f}")
        print(f"    Estimated savings: {estimate_gas_savings(len(items)):.3f} ETH")

        print("\n[2] Depositing and settling...")
        state = await orchestrator.run_batch(items)

        for item, failure in state.failed_items:
            print(f"    Failed: {item.source_chain} {item.asset_id}: {failure.reason}")

        if state.phase is not BatchPhase.COMPLETE:
            print(f"\n    Batch ended as {state.phase.value}")
            return

        print("\n[3] Swapping settled value into XLM...")
        outcome = await orchestrator.swap_settled("XLM")
        if isinstance(outcome, Succeeded):
            print(f"    Received: {outcome.value} (tx {outcome.handle})")
        else:
            print(f"    Swap failed: {outcome.reason}")

    except Exception as e:
        print(f"\nError: {e}")
        raise

    finally:
        await orchestrator.client.close()


if __name__ == "__main__":
    asyncio.run(main())
