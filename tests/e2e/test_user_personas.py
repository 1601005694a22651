"""
E2E tests for user personas, from raw statement to balance projection.

Each persona goes through the whole workflow on an in-memory database:
import a statement, detect recurrences, validate them, project the balance.

User personas:
- user_salaried: monthly salary, rent and weekly groceries, comfortable margin
- user_tight: rent close to income, frequent dips below zero
- user_new: a handful of transactions, nothing to detect yet
"""

import json
import logging
import pytest
from sqlalchemy.orm import sessionmaker
from datetime import date, timedelta
from pathlib import Path
from cashflow_engine.cli import main as cli
from cashflow_engine.domain.models import Frequency, TransactionKind
from cashflow_engine.infrastructure.clients.statement import StatementReader
from cashflow_engine.infrastructure.database import session as session_module
from cashflow_engine.services.detection_service import DetectionService
from cashflow_engine.services.projection_service import ProjectionService
from tests.factories import TODAY


def write_statement(path: Path, rows: list[tuple]) -> Path:
    lines = ["Date,Libelle,Montant"]
    lines += [f"{on.isoformat()},{label},{amount:.2f}" for on, label, amount in rows]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def monthly(day: int, label: str, amount: float, months: int = 6) -> list[tuple]:
    return [(date(2025, month, day), label, amount) for month in range(1, months + 1)]


def weekly(first: date, label: str, amount: float, weeks: int = 24) -> list[tuple]:
    return [(first + timedelta(weeks=week), label, amount) for week in range(weeks)]


@pytest.fixture
def salaried_statement(tmp_path: Path) -> Path:
    rows = (
        monthly(1, "VIR SALAIRE ACME", 2800.0)
        + monthly(5, "PRLV SEPA LOYER", -850.0)
        + weekly(date(2025, 1, 4), "CB CARREFOUR MARKET", -70.0)
        + [(date(2025, 3, 14), "CB FNAC", -129.99)]
    )
    return write_statement(tmp_path / "salaried.csv", rows)


@pytest.fixture
def tight_statement(tmp_path: Path) -> Path:
    rows = (
        monthly(28, "VIR SALAIRE INTERIM", 1400.0)
        + monthly(2, "PRLV SEPA LOYER STUDIO", -1250.0)
        + weekly(date(2025, 1, 3), "CB LIDL", -45.0)
    )
    return write_statement(tmp_path / "tight.csv", rows)


@pytest.fixture
def root_logger():
    """The CLI reconfigures the root logger; put it back afterwards"""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def run_persona(db, statement: Path, user_id: str, start_balance: float, config) -> dict:
    transactions = StatementReader().read(statement, user_id)
    detection = DetectionService.from_session(db, config)
    projection = ProjectionService.from_session(db, config)
    detection.transactions.add_many(transactions)

    result = detection.run_detection(user_id)
    for candidate in result.detections:
        detection.validate(user_id, candidate.candidate_id)

    return {
        "detection": result,
        "projection": projection.project_result(
            user_id, horizon_weeks=12, simulation_count=500, start_balance=start_balance, seed=2024, today=TODAY
        ),
    }


@pytest.mark.integration
def test_user_salaried_is_safe(db, config, salaried_statement: Path):
    """
    user_salaried: three clean recurrences
    Expected: salary, rent and groceries validated, low risk
    """
    outcome = run_persona(db, salaried_statement, "user_salaried", 500.0, config)

    detections = outcome["detection"].detections
    assert {(c.frequency, c.kind) for c in detections} == {
        (Frequency.monthly, TransactionKind.income),
        (Frequency.monthly, TransactionKind.expense),
        (Frequency.weekly, TransactionKind.expense),
    }

    projection = outcome["projection"]
    assert projection.metrics.recurrence_count == 3
    assert projection.metrics.residual_transaction_count == 1
    assert projection.metrics.risk_level == "success"
    assert projection.p50[-1] > projection.p50[0]


@pytest.mark.integration
def test_user_tight_is_at_risk(db, config, tight_statement: Path):
    """
    user_tight: rent lands before the salary every month
    Expected: every path goes negative after the first rent
    """
    outcome = run_persona(db, tight_statement, "user_tight", 100.0, config)

    projection = outcome["projection"]
    assert projection.metrics.recurrence_count == 3
    assert projection.metrics.risk_level == "danger"
    assert projection.metrics.negative_risk_percent == 100.0
    assert projection.p90[1] < 0


@pytest.mark.integration
def test_user_new_has_nothing_to_detect(db, config, tmp_path: Path):
    """
    user_new: two transactions only
    Expected: detection refuses, projection still works from the balance
    """
    statement = write_statement(
        tmp_path / "new.csv", [(date(2025, 6, 20), "VIR CAF", 180.0), (date(2025, 6, 25), "CB BOULANGERIE", -6.4)]
    )
    transactions = StatementReader().read(statement, "user_new")
    detection = DetectionService.from_session(db, config)
    detection.transactions.add_many(transactions)

    result = detection.run_detection("user_new")
    projection = ProjectionService.from_session(db, config).project(
        "user_new", horizon_weeks=4, simulation_count=100, seed=1, today=TODAY
    )

    assert result.success is False
    assert projection["metrics"]["current_balance"] == 173.6
    assert projection["metrics"]["recurrence_count"] == 0


@pytest.mark.integration
def test_reimporting_a_statement_is_idempotent(db, config, salaried_statement: Path):
    detection = DetectionService.from_session(db, config)
    transactions = StatementReader().read(salaried_statement, "user_salaried")

    assert detection.transactions.add_many(transactions) == len(transactions)
    assert detection.transactions.add_many(StatementReader().read(salaried_statement, "user_salaried")) == 0


@pytest.mark.integration
def test_cli_workflow(db, root_logger, salaried_statement: Path, tmp_path: Path, monkeypatch, capsys):
    """import -> detect -> validate -> project through the command line"""
    monkeypatch.setattr(session_module, "SessionLocal", sessionmaker(autoflush=False, bind=db.get_bind()))
    logs = []

    def run(*argv) -> dict:
        assert cli.main(list(argv)) == 0
        captured = capsys.readouterr()
        logs.extend(json.loads(line) for line in captured.err.splitlines() if line.startswith("{"))
        # stdout holds the response alone
        return json.loads(captured.out)

    imported = run("import", "user_cli", str(salaried_statement))
    assert imported["inserted"] == imported["read"] == 37

    detected = run("detect", "user_cli")
    assert len(detected["detections"]) == 3

    salary = next(d for d in detected["detections"] if d["kind"] == "income")
    validated = run("validate", "user_cli", salary["candidate_id"], "--label", "Salary", "--jitter", "1")
    assert validated["label"] == "Salary"
    assert len(validated["transaction_ids"]) == 6

    assert len(run("pending", "user_cli")["detections"]) == 2

    metrics_file = tmp_path / "cashflow.prom"
    projection = run(
        "--metrics-file", str(metrics_file),
        "project", "user_cli", "--weeks", "4", "--simulations", "200", "--seed", "3", "--today", TODAY.isoformat(),
    )
    assert projection["projection"]["labels"] == ["Today", "W1", "W2", "W3", "W4"]
    assert "cashflow_projection_total" in metrics_file.read_text()
    assert any(record["name"] == "cashflow_engine.projection" for record in logs)


@pytest.mark.integration
def test_cli_reports_domain_errors(db, root_logger, monkeypatch, capsys):
    monkeypatch.setattr(session_module, "SessionLocal", sessionmaker(autoflush=False, bind=db.get_bind()))

    assert cli.main(["reject", "user_cli", "missing"]) == 1
    captured = capsys.readouterr()
    assert captured.out == ""
    assert "error: " in captured.err
    assert "not found" in captured.err
