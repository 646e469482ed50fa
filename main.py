"""CLI entry point for the internship application lifecycle engine."""

import argparse
import json
import logging
import sqlite3
import sys

from src.assessment.review import ReviewDecision, SubmissionReviewer
from src.collaborators.sqlite import SqliteInternshipCatalog
from src.core.config import Settings
from src.core.db import (
    find_application,
    get_counter,
    get_summary,
    init_db,
    list_applications,
    list_summaries,
)
from src.core.errors import LifecycleError, NotFound
from src.core.schemas import ApplicationRecord, ApplicationStatus, RoundOutcome
from src.core.seed import SeedData, load_seed
from src.lifecycle.coordinator import RoundTransitionCoordinator
from src.lifecycle.counter import AggregateCounter
from src.lifecycle.projector import SummaryProjector
from src.lifecycle.registry import status_label


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        default=None,
        help="Path to settings YAML file (defaults apply when omitted)",
    )
    common.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    parser = argparse.ArgumentParser(
        description="Internship application lifecycle - rounds, summaries, and round statistics",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init", parents=[common], help="Create the database")

    seed_parser = subparsers.add_parser(
        "seed", parents=[common], help="Load internships and tests from YAML",
    )
    seed_parser.add_argument("--file", required=True, help="Path to seed YAML file")

    apply_parser = subparsers.add_parser(
        "apply", parents=[common], help="Create an application (form_pending)",
    )
    apply_parser.add_argument("--student", required=True)
    apply_parser.add_argument("--internship", required=True)
    apply_parser.add_argument("--id", default=None, help="Application ID (generated if omitted)")

    evaluate_parser = subparsers.add_parser(
        "evaluate", parents=[common], help="Apply a round outcome to an application",
    )
    evaluate_parser.add_argument("--application", required=True)
    evaluate_parser.add_argument(
        "--status", required=True, choices=[s.value for s in ApplicationStatus],
    )
    evaluate_parser.add_argument("--round", type=int, required=True)
    evaluate_parser.add_argument(
        "--outcome", required=True, choices=[o.value for o in RoundOutcome],
    )
    evaluate_parser.add_argument("--feedback", default="")
    evaluate_parser.add_argument("--evaluator", default=None)

    review_parser = subparsers.add_parser(
        "review", parents=[common], help="Approve, reject, or select a quiz submission",
    )
    review_parser.add_argument("--submission", type=int, required=True)
    review_parser.add_argument(
        "--decision", required=True, choices=[d.value for d in ReviewDecision],
    )
    review_parser.add_argument("--feedback", required=True)
    review_parser.add_argument("--evaluator", required=True)

    offer_parser = subparsers.add_parser(
        "accept-offer", parents=[common], help="Accept the offer for a selected application",
    )
    offer_parser.add_argument("--application", required=True)
    offer_parser.add_argument("--student", required=True)

    show_parser = subparsers.add_parser(
        "show", parents=[common], help="Print an application and its summary",
    )
    show_target = show_parser.add_mutually_exclusive_group(required=True)
    show_target.add_argument("--application", help="Application ID")
    show_target.add_argument(
        "--student", help="Student ID (look up by student and --internship)",
    )
    show_parser.add_argument("--internship", default=None)

    applications_parser = subparsers.add_parser(
        "applications", parents=[common], help="List applications for an internship",
    )
    applications_parser.add_argument("--internship", required=True)
    applications_parser.add_argument(
        "--status", default=None, choices=[s.value for s in ApplicationStatus],
    )

    summaries_parser = subparsers.add_parser(
        "summaries", parents=[common], help="Print a student's application summaries",
    )
    summaries_parser.add_argument("--student", required=True)

    stats_parser = subparsers.add_parser(
        "stats", parents=[common], help="Print round counters for an internship",
    )
    stats_parser.add_argument("--internship", required=True)
    stats_parser.add_argument("--rounds", type=int, default=2, help="Highest round to print")

    return parser.parse_args(argv)


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def load_settings(path: str | None) -> Settings:
    if path is None:
        return Settings()
    return Settings.from_yaml(path)


def build_coordinator(conn: sqlite3.Connection, settings: Settings) -> RoundTransitionCoordinator:
    """Wire the coordinator with its summary and counter listeners."""
    catalog = SqliteInternshipCatalog(conn)
    return RoundTransitionCoordinator(
        conn,
        listeners=[
            SummaryProjector(conn, catalog),
            AggregateCounter(conn, settings.counters),
        ],
    )


def _print_json(data: object) -> None:
    print(json.dumps(data, indent=2, default=str))


def _lookup_application(
    conn: sqlite3.Connection,
    coordinator: RoundTransitionCoordinator,
    args: argparse.Namespace,
) -> ApplicationRecord:
    if args.application:
        return coordinator.get_application(args.application)
    if not args.internship:
        msg = "--student requires --internship"
        raise ValueError(msg)
    record = find_application(conn, args.student, args.internship)
    if record is None:
        msg = f"No application from student {args.student} to internship {args.internship}"
        raise NotFound(msg)
    return record


def run_command(args: argparse.Namespace, settings: Settings) -> None:
    conn = init_db(settings.database.path)
    try:
        coordinator = build_coordinator(conn, settings)

        if args.command == "init":
            print(f"Database ready at {settings.database.path}")
        elif args.command == "seed":
            internships, tests = load_seed(conn, SeedData.from_yaml(args.file))
            print(f"Seeded {internships} internships and {tests} tests")
        elif args.command == "apply":
            record = coordinator.create_application(args.student, args.internship, args.id)
            print(f"Created application {record.id}")
        elif args.command == "evaluate":
            record = coordinator.apply_round_outcome(
                args.application,
                args.status,
                args.round,
                args.outcome,
                args.feedback,
                args.evaluator,
            )
            print(f"Application {record.id}: {status_label(record.status)} "
                  f"(round {record.current_round})")
        elif args.command == "review":
            reviewer = SubmissionReviewer(conn, coordinator)
            artifact = reviewer.review_submission(
                args.submission, args.decision, args.feedback, args.evaluator,
            )
            print(f"Submission {args.submission} {artifact.status}")
        elif args.command == "accept-offer":
            record = coordinator.accept_offer(args.application, args.student)
            print(f"Application {record.id}: {status_label(record.status)}")
        elif args.command == "show":
            record = _lookup_application(conn, coordinator, args)
            summary = get_summary(conn, record.student_id, record.internship_id)
            _print_json({
                "label": status_label(record.status),
                "application": record.model_dump(mode="json"),
                "summary": summary.model_dump(mode="json") if summary else None,
            })
        elif args.command == "applications":
            records = list_applications(conn, args.internship, args.status)
            _print_json([
                {
                    "id": r.id,
                    "student_id": r.student_id,
                    "status": r.status.value,
                    "label": status_label(r.status),
                    "current_round": r.current_round,
                }
                for r in records
            ])
        elif args.command == "summaries":
            _print_json([s.model_dump(mode="json") for s in list_summaries(conn, args.student)])
        elif args.command == "stats":
            counters = [
                get_counter(conn, args.internship, round_number)
                for round_number in range(1, args.rounds + 1)
            ]
            _print_json([c.model_dump(mode="json") for c in counters if c is not None])
    finally:
        conn.close()


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        settings = load_settings(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        run_command(args, settings)
    except (LifecycleError, FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
