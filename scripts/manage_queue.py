#!/usr/bin/env python3
"""
Monetization Queue Management

Review and maintain the opportunity queue from the command line.

Usage:
    python scripts/manage_queue.py stats
    python scripts/manage_queue.py list
    python scripts/manage_queue.py view <opportunity_id>
    python scripts/manage_queue.py approve <opportunity_id>
    python scripts/manage_queue.py reject <opportunity_id> [reason]
    python scripts/manage_queue.py expire [days]
    python scripts/manage_queue.py measure
    python scripts/manage_queue.py impact
"""

import argparse
import os
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

from src.database import init_db, get_session_factory
from src.monetization import ActionQueue, ImpactTracker, MonetizationError


def setup_logging(verbose: bool = False):
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(),
        ]
    )


def _money(value) -> str:
    return f"${float(value or 0):,.2f}"


def print_stats(queue: ActionQueue):
    stats = queue.get_queue_stats()
    print(f"\n{'='*60}")
    print("QUEUE STATS")
    print(f"{'='*60}")
    print(f"  Pending:      {stats.pending}")
    print(f"  Approved:     {stats.approved}")
    print(f"  Rejected:     {stats.rejected}")
    print(f"  Implemented:  {stats.implemented}")
    print(f"  Expired:      {stats.expired}")
    print(f"  Pending impact: {_money(stats.total_estimated_impact)}/month")


def print_pending(queue: ActionQueue, limit: int):
    opportunities = queue.get_pending_opportunities(limit)
    if not opportunities:
        print("No pending opportunities")
        return

    print(f"\n{len(opportunities)} pending opportunities:\n")
    for opp in opportunities:
        print(
            f"  {opp.id}  P{opp.priority:<2} {float(opp.confidence):.0%} "
            f"{_money(opp.estimated_revenue_impact):>12}  {opp.title[:50]}"
        )


def print_opportunity(queue: ActionQueue, opportunity_id: str) -> bool:
    opp = queue.get_opportunity(opportunity_id)
    if opp is None:
        print(f"Opportunity not found: {opportunity_id}")
        return False

    print(f"\n{'='*60}")
    print(opp.title)
    print(f"{'='*60}")
    print(f"  ID:          {opp.id}")
    print(f"  Type:        {opp.opportunity_type}")
    print(f"  Status:      {opp.status.value}")
    print(f"  Priority:    {opp.priority}")
    print(f"  Confidence:  {float(opp.confidence):.0%}")
    print(f"  Page:        {opp.page_url or '-'}")
    print(f"  Est. impact: {_money(opp.estimated_revenue_impact)}/month")
    print(f"  Expires:     {opp.expires_at or '-'}")
    print(f"\n{opp.description}\n")
    print(f"Actions ({len(opp.actions)}):")
    for action in opp.actions:
        print(f"  - {action.action_type} [{action.status.value}] {action.action_data}")
    return True


def print_impact(tracker: ImpactTracker):
    summary = tracker.get_impact_summary()
    print(f"\n{'='*60}")
    print("IMPACT SUMMARY")
    print(f"{'='*60}")
    print(f"  Measurements:   {summary.total_measurements}")
    print(f"  Completed:      {summary.completed_measurements}")
    print(f"  Pending:        {summary.pending_measurements}")
    print(f"  Inconclusive:   {summary.inconclusive_measurements}")
    print(f"  Avg accuracy:   {float(summary.avg_prediction_accuracy):.1%}")
    print(f"  Verified impact: {_money(summary.total_verified_impact)}/month")

    if summary.by_action_type:
        print("\nBy action type:")
        for action_type, rollup in summary.by_action_type.items():
            print(
                f"  {action_type:28s} n={rollup.count:<4} "
                f"accuracy={float(rollup.avg_accuracy):.1%} impact={_money(rollup.total_impact)}"
            )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Manage the monetization opportunity queue"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose logging"
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("stats", help="Queue counts per status")

    list_cmd = commands.add_parser("list", help="Pending opportunities")
    list_cmd.add_argument("--limit", type=int, default=50)

    view_cmd = commands.add_parser("view", help="Show one opportunity")
    view_cmd.add_argument("opportunity_id")

    approve_cmd = commands.add_parser("approve", help="Approve an opportunity")
    approve_cmd.add_argument("opportunity_id")

    reject_cmd = commands.add_parser("reject", help="Reject an opportunity")
    reject_cmd.add_argument("opportunity_id")
    reject_cmd.add_argument("reason", nargs="?", default=None)

    expire_cmd = commands.add_parser("expire", help="Expire stale pending opportunities")
    expire_cmd.add_argument("days", nargs="?", type=int, default=None)

    commands.add_parser("measure", help="Finalize due impact measurements")
    commands.add_parser("impact", help="Impact summary")

    return parser


def main(argv=None, session_factory=None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    if session_factory is None:
        load_dotenv()
        setup_logging(args.verbose)
        init_db()
        session_factory = get_session_factory()

    queue = ActionQueue(session_factory)
    reviewer = f"cli:{os.getenv('USER', 'admin')}"

    try:
        if args.command == "stats":
            print_stats(queue)
        elif args.command == "list":
            print_pending(queue, args.limit)
        elif args.command == "view":
            if not print_opportunity(queue, args.opportunity_id):
                return 1
        elif args.command == "approve":
            queue.approve_opportunity(args.opportunity_id, reviewer)
            print(f"Approved {args.opportunity_id}")
        elif args.command == "reject":
            queue.reject_opportunity(args.opportunity_id, reviewer, args.reason)
            print(f"Rejected {args.opportunity_id}")
        elif args.command == "expire":
            count = queue.expire_old_opportunities(args.days)
            print(f"Expired {count} opportunities")
        elif args.command == "measure":
            count = ImpactTracker(session_factory).process_pending_measurements()
            print(f"Processed {count} measurements")
        elif args.command == "impact":
            print_impact(ImpactTracker(session_factory))
    except MonetizationError as e:
        print(f"ERROR: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
