#!/usr/bin/env python3
"""
Zap Activity Feed - Command Line Entry Point

Fetches users, wallets and payments from an LNbits-style ledger, rebuilds
the internal zap transfers between teammates and prints the activity feed.

Usage:
    python main.py [feed] [options]
    python main.py wallet-log --user <external id> [options]
    python main.py users

Examples:
    python main.py feed --since-days 30 --sort amount --order desc
    python main.py feed --output feed.xlsx --stats
    python main.py wallet-log --user "auth0|123" --direction sent
"""
import argparse
import logging
import sys
import time
from typing import List, Optional

from classifier.roles import WalletRole
from config import (
    APP_NAME, APP_VERSION, FEED_HISTORY_DAYS, PAGE_SIZE, REWARD_NAME,
    WALLET_LOG_DAYS, get_history_cutoff
)
from ledger.errors import ConfigurationError, UpstreamUnavailable
from normalizer.amount_parser import format_sats
from normalizer.time_parser import describe_age, format_timestamp
from output.excel_generator import generate_feed_excel
from output.feed_presenter import SORT_FIELDS, SORT_ORDERS, filter_by_time, present, sort_events
from output.zap_stats import compute_zap_stats, sender_leaderboard
from reconciler.feed_loader import FeedLoader
from reconciler.team_roster import NOT_AVAILABLE
from reconciler.wallet_log import DIRECTIONS

COMMANDS = ('feed', 'wallet-log', 'users')
UNKNOWN_USER = 'Unknown'


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments. Without a command, `feed` is assumed."""
    argv = list(sys.argv[1:] if argv is None else argv)
    if not any(arg in COMMANDS for arg in argv) and not any(arg in ('-h', '--help') for arg in argv):
        argv.insert(0, 'feed')

    parser = argparse.ArgumentParser(
        description="Show the zap activity feed reconciled from ledger records.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py feed --since-days 30 --sort amount --order desc
  python main.py feed --output feed.xlsx --stats
  python main.py wallet-log --user "auth0|123" --direction sent
  python main.py users

Environment Variables:
  LNBITS_NODE_URL        - Base URL of the ledger node
  LNBITS_USERNAME        - Ledger admin username
  LNBITS_PASSWORD        - Ledger admin password
  PAIRED_LEDGER_RECORDS  - Require both rows of a transfer (default: true)
        """
    )

    # Options shared by every command
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose output'
    )
    subparsers = parser.add_subparsers(dest='command')

    # Feed
    feed = subparsers.add_parser('feed', parents=[common], help='Show reconciled zap transfers')
    feed.add_argument(
        '--since-days',
        type=int,
        default=FEED_HISTORY_DAYS,
        help=f'Only fetch payments from the last N days, 0 for all (default: {FEED_HISTORY_DAYS})'
    )
    feed.add_argument(
        '--sort',
        choices=SORT_FIELDS,
        default='time',
        help='Sort field (default: time)'
    )
    feed.add_argument(
        '--order',
        choices=SORT_ORDERS,
        default='desc',
        help='Sort order (default: desc)'
    )
    feed.add_argument(
        '--page',
        type=int,
        default=1,
        help='Page to show, clamped to the available pages (default: 1)'
    )
    feed.add_argument(
        '--page-size',
        type=int,
        default=PAGE_SIZE,
        help=f'Transfers per page (default: {PAGE_SIZE})'
    )
    feed.add_argument(
        '--user', '-u',
        default=None,
        help='External identity reference of the signed-in user (their wallet failures are fatal)'
    )
    feed.add_argument(
        '--output', '-o',
        default=None,
        help='Also write the full feed to this Excel file'
    )
    feed.add_argument(
        '--stats',
        action='store_true',
        help='Print feed statistics and top senders'
    )

    # Wallet log
    wallet_log = subparsers.add_parser('wallet-log', parents=[common], help="Show one user's wallet activity")
    wallet_log.add_argument(
        '--user', '-u',
        required=True,
        help='External identity reference of the user'
    )
    wallet_log.add_argument(
        '--wallet',
        choices=[WalletRole.SOURCE.value, WalletRole.DESTINATION.value],
        default=WalletRole.SOURCE.value,
        help='Which wallet to show (default: source)'
    )
    wallet_log.add_argument(
        '--direction',
        choices=DIRECTIONS,
        default='all',
        help='Filter by direction (default: all)'
    )
    wallet_log.add_argument(
        '--since-days',
        type=int,
        default=WALLET_LOG_DAYS,
        help=f'Only show the last N days, 0 for all (default: {WALLET_LOG_DAYS})'
    )

    # Team roster
    subparsers.add_parser('users', parents=[common], help='Show teammates and their wallet balances')

    return parser.parse_args(argv)


def _name(user) -> str:
    return user.display_name if user else UNKNOWN_USER


def _balance(amount_msat) -> str:
    return format_sats(amount_msat, REWARD_NAME) if amount_msat is not None else NOT_AVAILABLE


def _memo_suffix(memo: str) -> str:
    return f'  "{memo}"' if memo else ''


def run_feed(args: argparse.Namespace, loader: FeedLoader) -> int:
    """Load, present and optionally export the activity feed."""
    if args.page_size <= 0:
        print("Error: --page-size must be positive")
        return 1

    now = time.time()
    since = get_history_cutoff(args.since_days, now)
    current_user_id = loader.find_current_user(args.user).id if args.user else None
    result = loader.load_feed(since=since, current_user_id=current_user_id)
    events = filter_by_time(result.events, since)

    page = present(
        result.events,
        sort_field=args.sort,
        sort_order=args.order,
        time_window_cutoff=since,
        page=args.page,
        page_size=args.page_size,
    )

    print(f"\n--- Activity Feed ({page.total} transfers) ---")
    if not page.events:
        print("No zaps found.")
    for event in page.events:
        print(
            f"  {format_timestamp(event.timestamp):<18} "
            f"{_name(event.sender)} -> {_name(event.recipient)}: "
            f"{format_sats(event.amount, REWARD_NAME)}"
            f"{_memo_suffix(event.memo)}"
            f"  ({describe_age(event.timestamp, now)})"
        )
    print(page.label)

    summary = result.summary
    if summary.get('truncated'):
        print(f"Note: {summary['truncated']} transfers over the {len(result.events)} record limit were dropped")
    if result.warnings:
        print(f"\nWarnings ({len(result.warnings)}):")
        for warning in result.warnings[:10]:
            print(f"  - {warning}")
        if len(result.warnings) > 10:
            print(f"  ... and {len(result.warnings) - 10} more")

    if args.stats:
        stats = compute_zap_stats(events, result.users, now)
        print("\n--- Statistics ---")
        print(f"Total zaps sent: {stats['total_sats']:,} {REWARD_NAME}")
        print(f"Transfers: {stats['transfer_count']}")
        print(f"Users: {stats['number_of_users']}")
        print(f"Days: {stats['number_of_days']}")
        print(f"Average per user: {stats['average_per_user']:,} {REWARD_NAME}")
        print(f"Average per day: {stats['average_per_day']:,} {REWARD_NAME}")
        print(f"Biggest zap: {stats['biggest_zap']:,} {REWARD_NAME}")

        leaders = sender_leaderboard(events, limit=5)
        if not leaders.empty:
            print("\nTop senders:")
            for row in leaders.itertuples(index=False):
                print(f"  {row.sender}: {int(row.total_sats):,} {REWARD_NAME} in {int(row.transfers)} zap(s)")

    if args.output:
        ordered = sort_events(events, args.sort, args.order)
        generate_feed_excel(ordered, result.users, args.output, now)
        print(f"\nOutput saved to: {args.output}")

    return 0


def run_wallet_log(args: argparse.Namespace, loader: FeedLoader) -> int:
    """Print the activity log of one user's wallet."""
    now = time.time()
    entries = loader.load_wallet_log(
        args.user,
        wallet_role=WalletRole(args.wallet),
        direction=args.direction,
        since=get_history_cutoff(args.since_days, now),
    )

    print(f"\n--- Wallet Activity ({args.wallet}, {args.direction}) ---")
    if not entries:
        print("No transactions found.")
    for entry in entries:
        arrow = "to" if entry.direction == 'sent' else "from"
        print(
            f"  {format_timestamp(entry.payment.timestamp):<18} "
            f"{entry.direction:<8} {format_sats(entry.payment.amount, REWARD_NAME):>14} "
            f"{arrow} {_name(entry.counterparty)}"
            f"{_memo_suffix(entry.payment.memo)}"
        )
    print(f"{len(entries)} transaction(s)")
    return 0


def run_users(args: argparse.Namespace, loader: FeedLoader) -> int:
    """Print every teammate with their wallet balances."""
    members, warnings = loader.load_team()

    print(f"\n--- Users ({len(members)}) ---")
    print(f"  {'User':<28} {'Type':<12} {'Balance':>16} {'Allowance remaining':>20}")
    for member in members:
        print(
            f"  {member.user.display_name:<28} {member.user.role:<12} "
            f"{_balance(member.balance_msat):>16} {_balance(member.allowance_msat):>20}"
        )
    for warning in warnings:
        print(f"  - {warning}")
    return 0


def main(argv: Optional[List[str]] = None, loader: Optional[FeedLoader] = None) -> int:
    """Main entry point."""
    args = parse_arguments(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    print(f"\n{'='*60}")
    print(f"{APP_NAME} v{APP_VERSION}")
    print(f"{'='*60}")

    try:
        loader = loader or FeedLoader.from_config()
        if args.command == 'wallet-log':
            return run_wallet_log(args, loader)
        if args.command == 'users':
            return run_users(args, loader)
        return run_feed(args, loader)
    except UpstreamUnavailable as e:
        print(f"Error: Failed to load activity feed: {e}")
        return 1
    except ConfigurationError as e:
        print(f"Error: {e}")
        return 1
    except ValueError as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
