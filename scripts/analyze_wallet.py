#!/usr/bin/env python3
"""
WALLETSEER CLI - Command-line interface for wallet risk analysis
"""
import asyncio
import sys
import argparse
import logging
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config.settings import settings
from walletrisk.workflow.orchestrator import InvalidAddressError, WalletRiskOrchestrator


def print_banner(title: str) -> None:
    print("\n" + "="*80)
    print(title)
    print("="*80 + "\n")


async def cmd_analyze(args):
    """Run (or reuse) a wallet analysis"""
    print_banner(f"WALLETSEER RISK ANALYSIS: {args.address}")

    orchestrator = WalletRiskOrchestrator.build_default(settings)
    try:
        outcome = await orchestrator.analyze_wallet(
            args.address,
            force_refresh=args.force,
            max_age_minutes=args.max_age,
        )
    finally:
        await orchestrator.close()

    final = outcome.report.final_analysis
    print(f"📊 ANALYSIS {'(cached)' if outcome.cached else ''}")
    print(f"   Complete: {outcome.analysis_complete}")
    print(f"   Data sources: {', '.join(outcome.data_sources) or 'none'}")
    print(f"   Processing time: {outcome.processing_time_ms}ms\n")

    if final is None:
        print("❌ No final analysis available.")
        for error in outcome.errors:
            print(f"   • {error}")
        return

    print(f"🎯 OVERALL RISK: {final.overall_risk_score}/100 ({outcome.risk_summary.status})")
    print(f"   Confidence: {final.confidence_score}/100")
    print(f"   Source: {final.source}")
    print(f"   {outcome.risk_summary.description}\n")
    print(f"📝 {final.summary}\n")

    for kind, result in outcome.report.analysis.available().items():
        print(f"   {kind:<10} {result.risk_score:>3}/100  [{result.source}]")

    if final.alerts:
        print("\n🚨 ALERTS:")
        for alert in final.alerts:
            print(f"   [{alert.severity.upper()}] {alert.message}")

    if final.key_risks:
        print("\n⚠️  KEY RISKS:")
        for risk in final.key_risks:
            print(f"   • {risk}")

    if final.recommendations:
        print("\n💡 RECOMMENDATIONS:")
        for rec in final.recommendations:
            print(f"   • {rec}")

    if final.multi_chain_info:
        info = final.multi_chain_info
        print(f"\n🌐 Active chains ({info.total_chains_active}): {', '.join(info.chains_with_activity) or 'none'}")

    if outcome.errors:
        print("\n⚠️  Errors:")
        for error in outcome.errors:
            print(f"   • {error}")

    if args.output:
        Path(args.output).write_text(outcome.model_dump_json(indent=2), encoding="utf-8")
        print(f"\n💾 Saved results to {args.output}")

    print("\nNOT FINANCIAL ADVICE. Research only.\n")


async def cmd_status(args):
    """Show which stages have been persisted for an address"""
    orchestrator = WalletRiskOrchestrator.build_default(settings)
    try:
        status = await orchestrator.get_analysis_status(args.address)
    finally:
        await orchestrator.close()

    print_banner(f"ANALYSIS STATUS: {args.address}")
    if not status.exists:
        print("No stored analysis.\n")
        return
    print(f"   Last updated: {status.last_updated.isoformat()}")
    print(f"   Sub-analyses: {', '.join(status.analyses_complete) or 'none'}")
    print(f"   Final analysis: {'yes' if status.final_analysis_complete else 'no'}")
    print(f"   Stale: {'yes' if status.stale else 'no'}\n")


async def cmd_delete(args):
    """Delete the stored analysis for an address"""
    orchestrator = WalletRiskOrchestrator.build_default(settings)
    try:
        deleted = await orchestrator.delete_wallet_analysis(args.address)
    finally:
        await orchestrator.close()
    print(f"{'🗑️  Deleted' if deleted else 'Nothing stored for'} {args.address}")


async def cmd_list(args):
    """List stored wallet addresses"""
    orchestrator = WalletRiskOrchestrator.build_default(settings)
    try:
        addresses = await orchestrator.store.list_addresses()
    finally:
        await orchestrator.close()

    print_banner(f"STORED WALLETS ({len(addresses)})")
    for address in addresses:
        print(f"   {address}")


async def cmd_stats(args):
    """Summarize the report store"""
    orchestrator = WalletRiskOrchestrator.build_default(settings)
    try:
        stats = await orchestrator.store.stats()
    finally:
        await orchestrator.close()

    print_banner("REPORT STORE STATS")
    print(f"   Wallets: {stats.total_wallets}")
    print(f"   Size: {stats.total_size_mb:.4f} MB")
    if stats.oldest_analysis:
        print(f"   Oldest: {stats.oldest_analysis.isoformat()}")
        print(f"   Newest: {stats.newest_analysis.isoformat()}")
    print()


def main():
    """Main CLI entry point"""
    parser = argparse.ArgumentParser(
        description="WALLETSEER - Multi-chain wallet risk analysis",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Analyze a wallet (reuses a report younger than 30 minutes)
  python analyze_wallet.py analyze 0xd8da6bf26964af9d7eed9e03e53415d37aa96045

  # Ignore the cache and save the full result
  python analyze_wallet.py analyze 0xd8da6bf26964af9d7eed9e03e53415d37aa96045 --force --output report.json

  # Inspect stored analyses
  python analyze_wallet.py status 0xd8da6bf26964af9d7eed9e03e53415d37aa96045
  python analyze_wallet.py list
        """
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # ANALYZE command
    analyze_parser = subparsers.add_parser('analyze', help='Run wallet risk analysis')
    analyze_parser.add_argument('address', help='0x-prefixed wallet address')
    analyze_parser.add_argument('--force', action='store_true', help='Ignore any cached analysis')
    analyze_parser.add_argument('--max-age', type=int, default=None, help='Cache TTL in minutes')
    analyze_parser.add_argument('--output', type=str, help='Save JSON results to file')

    # STATUS command
    status_parser = subparsers.add_parser('status', help='Show stored analysis status')
    status_parser.add_argument('address', help='0x-prefixed wallet address')

    # DELETE command
    delete_parser = subparsers.add_parser('delete', help='Delete stored analysis')
    delete_parser.add_argument('address', help='0x-prefixed wallet address')

    subparsers.add_parser('list', help='List stored wallets')
    subparsers.add_parser('stats', help='Report store statistics')

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    commands = {
        'analyze': cmd_analyze,
        'status': cmd_status,
        'delete': cmd_delete,
        'list': cmd_list,
        'stats': cmd_stats,
    }

    try:
        asyncio.run(commands[args.command](args))
    except InvalidAddressError as e:
        print(f"\n❌ {e}\n")
        sys.exit(2)
    except KeyboardInterrupt:
        print("\n\n⚠️  Interrupted by user\n")
        sys.exit(0)
    except Exception as e:
        print(f"\n❌ ERROR: {e}\n")
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
