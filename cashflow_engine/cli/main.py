"""Command-line entry point"""

import argparse
import logging
import sys
from datetime import date
from typing import List, Optional

from prometheus_client import REGISTRY, write_to_textfile
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from cashflow_engine.cli.schemas import (
    CandidateSchema,
    DetectionResponse,
    ImportResponse,
    ProjectionResponse,
    RecurrenceEdits,
    RecurrenceListResponse,
    RecurrenceSchema,
    StatusResponse,
)
from cashflow_engine.config import settings
from cashflow_engine.domain.exceptions import DomainException
from cashflow_engine.infrastructure.clients.statement import StatementReader
from cashflow_engine.infrastructure.database.models import Base
from cashflow_engine.infrastructure.database.repositories import SqlTransactionRepository
from cashflow_engine.infrastructure.database.session import session_scope
from cashflow_engine.infrastructure.observability.logging import setup_logging
from cashflow_engine.services.detection_service import DetectionService
from cashflow_engine.services.projection_service import ProjectionService

logger = logging.getLogger(__name__)


def init_db(db: Session, args: argparse.Namespace) -> StatusResponse:
    Base.metadata.create_all(bind=db.get_bind())
    return StatusResponse(status="ok", service=settings.service_name)


def import_statement(db: Session, args: argparse.Namespace) -> ImportResponse:
    transactions = StatementReader(dayfirst=args.dayfirst).read(args.path, args.user_id)
    inserted = SqlTransactionRepository(db).add_many(transactions)
    return ImportResponse(user_id=args.user_id, read=len(transactions), inserted=inserted)


def detect(db: Session, args: argparse.Namespace) -> DetectionResponse:
    result = DetectionService.from_session(db).run_detection(args.user_id, include_weak=args.include_weak)
    return DetectionResponse.model_validate(result)


def pending(db: Session, args: argparse.Namespace) -> DetectionResponse:
    candidates = DetectionService.from_session(db).list_pending(args.user_id)
    return DetectionResponse(
        success=True,
        message=f"{len(candidates)} pending detection(s)",
        detections=[CandidateSchema.model_validate(c) for c in candidates],
    )


def validate(db: Session, args: argparse.Namespace) -> RecurrenceSchema:
    edits = RecurrenceEdits(
        label=args.label,
        mean_amount=args.amount,
        frequency=args.frequency,
        reference_day=args.reference_day,
        occurrence_probability=args.probability,
        jitter_days=args.jitter,
    )
    recurrence = DetectionService.from_session(db).validate(
        args.user_id, args.candidate_id, edits.model_dump(exclude_none=True)
    )
    return RecurrenceSchema.model_validate(recurrence)


def reject(db: Session, args: argparse.Namespace) -> CandidateSchema:
    return CandidateSchema.model_validate(DetectionService.from_session(db).reject(args.user_id, args.candidate_id))


def recurrences(db: Session, args: argparse.Namespace) -> RecurrenceListResponse:
    found = DetectionService.from_session(db).list_recurrences(args.user_id, include_inactive=args.all)
    return RecurrenceListResponse(
        user_id=args.user_id,
        recurrences=[RecurrenceSchema.model_validate(r) for r in found],
    )


def project(db: Session, args: argparse.Namespace) -> ProjectionResponse:
    payload = ProjectionService.from_session(db).project(
        args.user_id,
        horizon_weeks=args.weeks,
        simulation_count=args.simulations,
        start_balance=args.start_balance,
        seed=args.seed,
        today=args.today,
        timeout_seconds=args.timeout,
    )
    return ProjectionResponse.model_validate(payload)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cashflow-engine", description="Recurring transaction detection and balance projection")
    parser.add_argument("--metrics-file", help="Write Prometheus metrics to this file when done (textfile collector)")
    commands = parser.add_subparsers(dest="command", required=True)

    cmd = commands.add_parser("init-db", help="Create database tables")
    cmd.set_defaults(handler=init_db)

    cmd = commands.add_parser("import", help="Import a CSV bank statement")
    cmd.add_argument("user_id")
    cmd.add_argument("path")
    cmd.add_argument("--dayfirst", action="store_true", help="Dates are written DD/MM/YYYY")
    cmd.set_defaults(handler=import_statement)

    cmd = commands.add_parser("detect", help="Detect recurrences in a user's history")
    cmd.add_argument("user_id")
    cmd.add_argument("--include-weak", action="store_true", help="Also report two-occurrence groups")
    cmd.set_defaults(handler=detect)

    cmd = commands.add_parser("pending", help="List detections awaiting validation")
    cmd.add_argument("user_id")
    cmd.set_defaults(handler=pending)

    cmd = commands.add_parser("validate", help="Validate a detection")
    cmd.add_argument("user_id")
    cmd.add_argument("candidate_id")
    cmd.add_argument("--label")
    cmd.add_argument("--amount", type=float)
    cmd.add_argument("--frequency")
    cmd.add_argument("--reference-day", type=int)
    cmd.add_argument("--probability", type=float)
    cmd.add_argument("--jitter", type=int)
    cmd.set_defaults(handler=validate)

    cmd = commands.add_parser("reject", help="Reject a detection")
    cmd.add_argument("user_id")
    cmd.add_argument("candidate_id")
    cmd.set_defaults(handler=reject)

    cmd = commands.add_parser("recurrences", help="List validated recurrences")
    cmd.add_argument("user_id")
    cmd.add_argument("--all", action="store_true", help="Include deactivated recurrences")
    cmd.set_defaults(handler=recurrences)

    cmd = commands.add_parser("project", help="Monte Carlo balance projection")
    cmd.add_argument("user_id")
    cmd.add_argument("--weeks", type=int, default=settings.default_horizon_weeks)
    cmd.add_argument("--simulations", type=int, default=settings.default_simulations)
    cmd.add_argument("--start-balance", type=float)
    cmd.add_argument("--seed", type=int)
    cmd.add_argument("--today", type=date.fromisoformat, help="Projection start date (YYYY-MM-DD)")
    cmd.add_argument("--timeout", type=float, help="Abort the simulation after this many seconds")
    cmd.set_defaults(handler=project)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    # stdout carries the JSON response
    setup_logging(settings.log_level, stream=sys.stderr)

    try:
        with session_scope() as db:
            response: BaseModel = args.handler(db, args)
    except (DomainException, ValidationError) as e:
        logger.warning(f"Command {args.command} failed: {e}", extra={"command": args.command})
        print(f"error: {e}", file=sys.stderr)
        return 1
    finally:
        if args.metrics_file:
            write_to_textfile(args.metrics_file, REGISTRY)

    print(response.model_dump_json(indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
