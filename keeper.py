#!/usr/bin/env python3
"""CircleKeeper - relationship maintenance from the terminal.

Single entry point for the application.

Usage:
    python keeper.py --classify 42            # Suggest a circle for contact 42
    python keeper.py --capacity               # Circle sizes against targets
    python keeper.py --rebalance [--apply]    # Propose (and commit) moves
    python keeper.py --review                 # Start or show this week's review
    python keeper.py --progress               # Progress of this week's review
    python keeper.py --version                # Show version
"""

import argparse
import logging
import sys
from typing import Optional

from circlekeeper import __version__
from circlekeeper.core.config import get_config, validate_config
from circlekeeper.core.exceptions import CircleKeeperError
from circlekeeper.core.logging import get_logger, setup_logging
from circlekeeper.db.database import Database
from circlekeeper.db.models import TIER_DEFINITIONS
from circlekeeper.engine.container import EngineServices, build_services
from circlekeeper.engine.templates import validate_review_templates

DEFAULT_OWNER = "me"


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for CircleKeeper.

    Returns:
        Exit code (0 = success, non-zero = error)
    """
    parser = argparse.ArgumentParser(
        description="CircleKeeper - keep your circles the right size"
    )
    parser.add_argument("--owner", default=DEFAULT_OWNER, help="Account to act on")
    parser.add_argument("--classify", type=int, metavar="ID", help="Suggest a circle for a contact")
    parser.add_argument("--capacity", action="store_true", help="Show circle sizes and status")
    parser.add_argument(
        "--rebalance", action="store_true", help="Suggest moves out of overloaded circles"
    )
    parser.add_argument(
        "--apply", action="store_true", help="With --rebalance: commit the suggested moves"
    )
    parser.add_argument("--review", action="store_true", help="Start or show this week's review")
    parser.add_argument("--progress", action="store_true", help="Show this week's review progress")
    parser.add_argument("--version", action="store_true", help="Show version and exit")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    args = parser.parse_args(argv)

    if args.version:
        print(f"CircleKeeper v{__version__}")
        return 0

    if args.apply and not args.rebalance:
        parser.error("--apply only works together with --rebalance")

    # Load and validate configuration
    try:
        config = get_config()
    except CircleKeeperError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    # Initialize logging
    debug = args.debug or config.debug
    setup_logging(config.log_path, console_level=logging.DEBUG if debug else logging.WARNING)
    logger = get_logger("main")
    logger.info(f"CircleKeeper v{__version__} starting...")

    issues = validate_config(config)
    for issue in issues:
        if issue.startswith("CRITICAL:"):
            logger.error(f"Configuration: {issue}")
            return 2
        logger.warning(f"Configuration issue: {issue}")

    template_issues = validate_review_templates()
    for issue in template_issues:
        logger.error(f"Templates: {issue}")
    if template_issues:
        print(f"Template error: {template_issues[0]}", file=sys.stderr)
        return 2

    db = Database(str(config.db_path))
    try:
        db.initialize()
        services = build_services(db, config)

        if args.classify is not None:
            _print_classification(services, args.owner, args.classify)
        if args.capacity:
            _print_capacity(services, args.owner)
        if args.rebalance:
            _rebalance(services, args.owner, apply=args.apply)
        if args.review:
            _print_review(services, args.owner)
        if args.progress:
            _print_progress(services, args.owner)
    except CircleKeeperError as e:
        logger.error(f"{type(e).__name__}: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        db.close()

    return 0


def _print_classification(services: EngineServices, owner_id: str, contact_id: int) -> None:
    suggestion = services.scorer.classify(owner_id, contact_id)
    name = TIER_DEFINITIONS[suggestion.tier].name
    print(f"Contact {contact_id}: {name} (confidence {suggestion.confidence:.1f})")
    for factor in suggestion.factors:
        print(
            f"  {factor.kind.value:<14} {factor.value:>5.1f} x {factor.weight:.2f}"
            f"  {factor.description}"
        )
    if suggestion.alternatives:
        alternatives = ", ".join(
            f"{alt.tier.value} {alt.confidence:.1f}" for alt in suggestion.alternatives
        )
        print(f"  alternatives: {alternatives}")


def _print_capacity(services: EngineServices, owner_id: str) -> None:
    distribution = services.capacity.tier_distribution(owner_id)
    for status in services.capacity.capacity_report(owner_id):
        definition = TIER_DEFINITIONS[status.tier]
        print(
            f"{definition.name:<16} {status.current_size:>4}/{status.recommended_size:<4}"
            f" {status.status.value:<8} {status.message}"
        )
        print(
            f"  {definition.description}, usually"
            f" {definition.default_frequency.value} contact"
        )
    print(f"Uncategorized    {distribution.uncategorized:>4}")
    print(f"Total            {distribution.total:>4}")


def _rebalance(services: EngineServices, owner_id: str, apply: bool) -> None:
    suggestions = services.capacity.suggest_rebalancing(owner_id)
    if not suggestions:
        print("All circles are within capacity.")
        return
    for s in suggestions:
        print(f"Move {s.contact_name or s.contact_id}: {s.from_tier.value} -> {s.to_tier.value}")
        print(f"  {s.reason}")
    if apply:
        records = services.capacity.apply_rebalancing(owner_id, suggestions)
        print(f"Committed {len(records)} move(s).")


def _print_review(services: EngineServices, owner_id: str) -> None:
    session = services.review.start_session(owner_id)
    assert session.id is not None
    state = "active" if session.is_active else ("skipped" if session.skipped else "completed")
    print(f"Review {session.iso_year}-W{session.iso_week:02d} ({state})")
    reviewed = set(session.reviewed)
    for item in session.items:
        mark = "x" if item.contact_id in reviewed else " "
        print(f"  [{mark}] {item.review_type.value:<10} {item.suggested_action}")
    _print_progress(services, owner_id, session.id)


def _print_progress(
    services: EngineServices, owner_id: str, session_id: Optional[int] = None
) -> None:
    if session_id is None:
        session = services.review.current_session(owner_id)
        if session is None or session.id is None:
            print("No active review this week. Run with --review to start one.")
            return
        session_id = session.id
    progress = services.review.progress(owner_id, session_id)
    print(
        f"{progress.reviewed_contacts}/{progress.total_contacts} reviewed"
        f" ({progress.percent_complete}%), about"
        f" {progress.estimated_minutes_remaining} min left"
    )


if __name__ == "__main__":
    sys.exit(main())
