"""
Arena trading console.

   python -m arena.cli status
   python -m arena.cli init SOL --fee 0.1 --balance 10000
   python -m arena.cli open SOL long 198.5 500 --tp 210 --sl 190
   python -m arena.cli close SOL 0 201.25
   python -m arena.cli positions --active
   python -m arena.cli leaderboard --limit 10

Signs with ``--keypair`` when given, else with the persisted session key
under ``ARENA_DATA_DIR``.
"""

from __future__ import annotations

import argparse
import asyncio
from typing import Any, Optional, Sequence

from arena.core.logging import configure_console_log, log
from arena.core.trading_core.config import get_config
from arena.core.trading_core.context import TradingContext
from arena.core.trading_core.errors import ArenaError
from arena.core.trading_core.trading_service import TradingService
from arena.ledger.constants import PAIR_SYMBOLS
from arena.services import txlog
from arena.services.signer_loader import load_signer


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Paper-trading arena console.")
    parser.add_argument("--keypair", help="Signer file (id.json, base58/base64 secret, or JSON object)")
    parser.add_argument("--env-file", help="Alternate .env file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("status", help="Which trading accounts exist for this wallet.")

    account = sub.add_parser("account", help="Show one trading account.")
    account.add_argument("pair", help="Pair symbol, e.g. SOL")

    init = sub.add_parser("init", help="Create a trading account for a pair.")
    init.add_argument("pair")
    init.add_argument("--fee", default="0", help="Entry fee in SOL")
    init.add_argument("--balance", default="10000", help="Starting quote balance")

    open_ = sub.add_parser("open", help="Open a long/short position (size in quote units).")
    open_.add_argument("pair")
    open_.add_argument("direction", choices=["long", "short"])
    open_.add_argument("price")
    open_.add_argument("size")
    open_.add_argument("--tp", help="Take-profit price")
    open_.add_argument("--sl", help="Stop-loss price")

    close = sub.add_parser("close", help="Close a position by pair and id.")
    close.add_argument("pair")
    close.add_argument("position_id", type=int)
    close.add_argument("price")

    for name in ("buy", "sell"):
        spot = sub.add_parser(name, help=f"Spot {name} (amount in base units).")
        spot.add_argument("pair")
        spot.add_argument("price")
        spot.add_argument("amount")

    sub.add_parser("join", help="Join the configured competition.")
    sub.add_parser("settle", help="Settle this wallet's competition entry.")

    positions = sub.add_parser("positions", help="List this wallet's positions.")
    positions.add_argument("--active", action="store_true", help="Only active positions")

    board = sub.add_parser("leaderboard", help="Competition leaderboard.")
    board.add_argument("--limit", type=int)

    sub.add_parser("competition", help="Show the competition account.")
    sub.add_parser("balance", help="Native SOL balance of the wallet.")

    airdrop = sub.add_parser("airdrop", help="Request a devnet airdrop.")
    airdrop.add_argument("--amount", default="1", help="SOL to request")
    airdrop.add_argument("--wait", action="store_true", help="Poll until the balance moves")

    txs = sub.add_parser("txlog", help="Show recent journal entries.")
    txs.add_argument("--limit", type=int, default=20)

    return parser


def _print_signature(title: str, signature: str) -> None:
    print(f"=== {title} ===")
    print(f"signature: {signature}")
    print()


async def _dispatch(args: argparse.Namespace, svc: Any) -> int:
    cmd = args.command

    if cmd == "status":
        status = await svc.get_account_status()
        print(f"=== Accounts for {svc.owner} ===")
        for idx, exists in sorted(status.items()):
            print(f"{PAIR_SYMBOLS.get(idx, idx):<5} {'initialized' if exists else '-'}")
        print()
        return 0

    if cmd == "account":
        account = await svc.get_user_account_data(args.pair)
        if account is None:
            print(f"No {args.pair.upper()} account for {svc.owner}")
            return 1
        print(f"=== {args.pair.upper()} account ===")
        print(f"quote balance:   {account.token_in}")
        print(f"base balance:    {account.token_out}")
        print(f"total positions: {account.total_positions}")
        print()
        return 0

    if cmd == "init":
        _print_signature("Initialize account", await svc.initialize_account(args.pair, args.fee, args.balance))
        return 0

    if cmd == "open":
        sig = await svc.open_position(args.pair, args.direction, args.price, args.size,
                                      take_profit=args.tp, stop_loss=args.sl)
        _print_signature("Open position", sig)
        return 0

    if cmd == "close":
        _print_signature("Close position", await svc.close_position(args.pair, args.position_id, args.price))
        return 0

    if cmd in ("buy", "sell"):
        sig = await svc.execute_spot_trade(args.pair, cmd, args.price, args.amount)
        _print_signature(f"Spot {cmd}", sig)
        return 0

    if cmd == "join":
        _print_signature("Join competition", await svc.join_competition())
        return 0

    if cmd == "settle":
        _print_signature("Settle competition", await svc.settle_competition())
        return 0

    if cmd == "positions":
        positions = await svc.fetch_positions(active_only=args.active)
        print(f"=== Positions ({len(positions)}) ===")
        for p in positions:
            d = p.record.to_dict()
            print(f"{p.address}  {d['pair']:<5} #{d['position_id']:<3} {d['direction']:<5} "
                  f"amount={d['amount']} entry={d['entry_price']} {d['status']}")
        print()
        return 0

    if cmd == "leaderboard":
        entries = await svc.fetch_leaderboard(limit=args.limit)
        print("=== Leaderboard ===")
        for e in entries:
            print(f"{e.rank:>3}. {e.owner}  pnl={e.total_pnl}  trades={e.total_trades}"
                  f"{'  (settled)' if e.settled else ''}")
        print()
        return 0

    if cmd == "competition":
        comp = await svc.fetch_competition_data()
        if comp is None:
            print("Competition account not found")
            return 1
        print(f"=== {comp.name} ===")
        print(f"authority:    {comp.authority}")
        print(f"window:       {comp.start_time} -> {comp.end_time}")
        print(f"participants: {comp.total_participants}")
        print(f"prize pool:   {comp.prize_pool}")
        print(f"active:       {comp.is_active}")
        print()
        return 0

    if cmd == "balance":
        print(f"{svc.owner}: {await svc.get_balance()} SOL")
        return 0

    if cmd == "airdrop":
        sig = await svc.request_airdrop(args.amount)
        _print_signature("Airdrop", sig)
        if args.wait:
            balance = await svc.wait_for_balance()
            print(f"balance: {balance if balance is not None else 'unchanged'}")
        return 0

    if cmd == "txlog":
        for entry in txlog.read_last(args.limit, path=txlog.journal_path(svc.ctx.config.data_dir)):
            print(f"{entry.get('ts')}  {str(entry.get('operation')):<20} {str(entry.get('path')):<7} "
                  f"{str(entry.get('state')):<18} {entry.get('signature')}")
        return 0

    print(f"[arena] Unknown command: {cmd}")
    return 1


async def _run_async_cli(args: argparse.Namespace) -> int:
    cfg = get_config(args.env_file)
    try:
        local = load_signer(args.keypair) if args.keypair else None
    except (FileNotFoundError, ValueError) as exc:
        log.error(f"Cannot load keypair {args.keypair}: {exc}", source="arena")
        return 2
    ctx = TradingContext.create(cfg, local_keypair=local)
    try:
        return await _dispatch(args, TradingService(ctx))
    except ArenaError as exc:
        log.error(f"{type(exc).__name__}: {exc}", source="arena")
        return 2
    finally:
        await ctx.close()


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if getattr(args, "command", None) is None:
        parser.print_help()
        return 1
    configure_console_log(debug=args.verbose)
    try:
        return asyncio.run(_run_async_cli(args))
    except KeyboardInterrupt:
        print("\nInterrupted by user.")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
