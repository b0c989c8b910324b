#!/usr/bin/env python3
"""Simple CLI for operating the DCA bot locally"""

import argparse
import asyncio
from typing import List, Optional

from dcabot.config import settings
from dcabot.core.strategies.dca import Quote, TickSummary, TokenInfo
from dcabot.core.strategies.dca.analytics import WalletValue
from dcabot.core.strategies.dca.providers import build_engine
from dcabot.logging_config import setup_logging


def print_quote(quote: Quote, direction: str):
    """Pretty print a quote"""
    route = quote.route_type.value if quote.route_type else "none"
    impact = f"{quote.price_impact_pct}%" if quote.price_impact_pct is not None else "-"

    print(f"\n💱 {direction} quote")
    print("=" * 50)
    print(f"Input:        {quote.input_amount} ({quote.input_mint})")
    print(f"Output:       {quote.output_amount} ({quote.output_mint})")
    print(f"Route:        {route}")
    print(f"Price impact: {impact}")
    if quote.pool_ref:
        print(f"Pool:         {quote.pool_ref}")
    if not quote.has_route:
        print("\n⚠️  No route available for this trade")


def print_tick(summary: TickSummary):
    """Pretty print a scheduler pass"""
    if summary.aborted:
        print(f"❌ Tick aborted: {summary.error}")
        return

    print(f"\n⏱  DCA tick at {summary.started_at.isoformat()} ({summary.duration_ms} ms)")
    print(f"Due: {summary.due}  Succeeded: {summary.succeeded}  Failed: {summary.failed}  "
          f"Skipped: {summary.skipped}  Auto-paused: {summary.paused}")
    for result in summary.results:
        if result.success:
            print(f" ✅ {result.strategy_id}: {result.tokens_received} units  {result.explorer_link or result.tx_hash}")
        elif result.skipped:
            print(f" ⏭  {result.strategy_id}: no longer active")
        else:
            print(f" ❌ {result.strategy_id}: {result.error_message}")


def print_wallet(value: WalletValue, pubkey: str):
    """Pretty print a wallet valuation"""
    print(f"\n👛 Wallet {pubkey}")
    print("=" * 50)
    print(f"SOL balance: {value.sol_balance}")
    if value.sol_price_usd is not None:
        print(f"SOL price:   ${value.sol_price_usd:,.2f}")
    for token in value.tokens:
        usd = f"${token.value_usd:,.2f}" if token.value_usd is not None else "No price"
        print(f"  {token.balance:>16} {token.token.symbol:<8} {token.value_sol:>14} SOL  {usd}")
    total_usd = value.total_usd
    print(f"\nTotal: {value.total_sol} SOL" + (f" (${total_usd:,.2f})" if total_usd is not None else ""))


async def cli_tick():
    engine = build_engine()
    print_tick(await engine.scheduler.tick())


async def cli_quote(direction: str, mint: str, amount: str, decimals: Optional[int]):
    engine = build_engine()
    if direction == "buy":
        quote = await engine.quoter.quote_buy(mint, amount, output_decimals=decimals)
    else:
        quote = await engine.quoter.quote_sell(mint, amount, token_decimals=decimals)
    print_quote(quote, direction.title())


async def cli_analytics(user_id: str):
    engine = build_engine()
    strategies = await engine.service.list_strategies(user_id)
    executions = await engine.service.get_user_executions(user_id, limit=1000)
    if not strategies:
        print(f"No DCA strategies for user {user_id}")
        return

    print(f"\n📈 DCA analytics for {user_id}")
    print("=" * 50)
    for strategy in strategies:
        own = [e for e in executions if e.strategy_id == strategy.id]
        stats = await engine.analytics.strategy_analytics(strategy, own)
        print(f"{strategy.base.symbol}/{strategy.target.symbol} [{strategy.status.value}] "
              f"{engine.service.frequency_display(strategy.frequency)}")
        print(f"   Invested: {stats.total_invested} {strategy.base.symbol}  "
              f"Value: {stats.current_value:.6f}  PnL: {stats.pnl:.6f} ({stats.pnl_percentage:.2f}%)")
        print(f"   Executions: {stats.successful_executions} ok / {stats.failed_executions} failed")

    portfolio = await engine.analytics.portfolio_analytics(strategies, executions)
    print("-" * 50)
    print(f"Total invested: {portfolio.total_invested}  Current value: {portfolio.total_current_value:.6f}")
    print(f"Overall PnL: {portfolio.overall_pnl:.6f} ({portfolio.overall_pnl_percentage:.2f}%)")
    print(f"Strategies: {portfolio.total_strategies} ({portfolio.active_strategies} active, "
          f"{portfolio.paused_strategies} paused)  Success rate: {portfolio.success_rate:.1f}%")


async def cli_wallet(pubkey: str, mints: List[str], decimals: int):
    engine = build_engine()
    holdings = [TokenInfo(symbol=m[:6], mint=m, decimals=decimals) for m in mints]
    print_wallet(await engine.valuator.value_wallet(pubkey, holdings), pubkey)


async def cli_provision_wallet(user_id: str):
    engine = build_engine()
    if engine.wallet is None:
        print("❌ WALLET_ENCRYPTION_KEY is not set; cannot create custodial wallets")
        return
    user = await engine.service.provision_wallet(user_id, engine.wallet)
    print(f"🔑 Wallet for {user_id}: {user.wallet_pubkey}")
    print("Fund this address with SOL before the first DCA tick.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Solana DCA bot CLI")
    parser.add_argument("--log-level", default=None, help=f"Log level (default: {settings.log_level})")
    parser.add_argument(
        "--log-format",
        choices=("auto", "json", "console"),
        default=None,
        help=f"Log output format (default: {settings.log_format})",
    )
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("tick", help="Run one scheduler pass over due strategies")
    subparsers.add_parser("run", help="Serve the DCA runtime until SIGINT/SIGTERM")

    for direction in ("buy", "sell"):
        quote_parser = subparsers.add_parser(f"quote-{direction}", help=f"Quote a {direction} against SOL")
        quote_parser.add_argument("mint", help="Token mint address")
        quote_parser.add_argument("amount", help="SOL amount to spend" if direction == "buy" else "Token amount to sell")
        quote_parser.add_argument("--decimals", type=int, help="Token decimals (looked up when omitted)")

    analytics_parser = subparsers.add_parser("analytics", help="Strategy and portfolio PnL for a user")
    analytics_parser.add_argument("user_id", help="User id")

    wallet_parser = subparsers.add_parser("wallet", help="Value a wallet's SOL and token holdings")
    wallet_parser.add_argument("pubkey", help="Wallet address")
    wallet_parser.add_argument("mints", nargs="*", help="Token mints to include")
    wallet_parser.add_argument("--decimals", type=int, default=settings.launchpad_token_decimals,
                               help="Decimals of the listed mints")

    provision_parser = subparsers.add_parser("provision-wallet", help="Create and store a custodial wallet for a user")
    provision_parser.add_argument("user_id", help="User id")

    return parser


async def _main(args: argparse.Namespace, parser: argparse.ArgumentParser):
    command = args.command

    if command == "tick":
        await cli_tick()

    elif command in ("quote-buy", "quote-sell"):
        await cli_quote(command.split("-", 1)[1], args.mint, args.amount, args.decimals)

    elif command == "analytics":
        await cli_analytics(args.user_id)

    elif command == "wallet":
        await cli_wallet(args.pubkey, args.mints, args.decimals)

    elif command == "provision-wallet":
        await cli_provision_wallet(args.user_id)

    else:
        print(f"❌ Unknown command: {command}")
        parser.print_help()


def main():
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    if args.command == "run":
        from dcabot.agent_runtime.run import main as run_runtime

        run_runtime(args.log_level, args.log_format)
        return

    setup_logging(args.log_level, args.log_format)

    asyncio.run(_main(args, parser))


if __name__ == "__main__":
    main()
