"""Pytest fixtures for testing"""

import pytest
from datetime import date, timedelta
from typing import Generator
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from cashflow_engine.config import Settings
from cashflow_engine.infrastructure.database.models import Base
from cashflow_engine.infrastructure.database.repositories import (
    SqlBalanceSnapshotProvider,
    SqlMappingRepository,
    SqlRecurrenceRepository,
    SqlTransactionRepository,
)
from cashflow_engine.domain.models import Transaction, TransactionKind
from tests.factories import make_transaction


# Test database (in-memory, one connection shared by the whole test)
TEST_DATABASE_URL = "sqlite://"
engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def config() -> Settings:
    """Settings isolated from the environment, small enough for fast simulations"""
    return Settings(
        _env_file=None,
        database_url=TEST_DATABASE_URL,
        min_simulations=1,
        default_simulations=200,
    )


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def repositories(db: Session) -> dict:
    return {
        "transactions": SqlTransactionRepository(db),
        "recurrences": SqlRecurrenceRepository(db),
        "mappings": SqlMappingRepository(db),
        "balances": SqlBalanceSnapshotProvider(db),
    }


@pytest.fixture
def salary_history() -> list[Transaction]:
    """Six monthly salaries"""
    return [
        make_transaction(
            f"salary_{month}",
            date(2025, month, 1),
            2500.0,
            "SALAIRE ENTREPRISE X",
            kind=TransactionKind.income,
            category_id="income",
        )
        for month in range(1, 7)
    ]


@pytest.fixture
def sample_transactions(salary_history: list[Transaction]) -> list[Transaction]:
    """Sample transaction history: salary, rent, weekly groceries and one-off spending"""
    transactions = list(salary_history)

    # Rent on the 5th
    for month in range(1, 7):
        transactions.append(
            make_transaction(f"rent_{month}", date(2025, month, 5), 800.0, "PRLV SEPA LOYER AGENCE", category_id="housing")
        )

    # Weekly groceries, every Saturday
    first_saturday = date(2025, 1, 4)
    for week in range(24):
        transactions.append(
            make_transaction(
                f"grocery_{week}",
                first_saturday + timedelta(weeks=week),
                62.0 + (week % 3) * 0.5,
                "CARTE SUPERMARCHE CASINO",
                category_id="groceries",
            )
        )

    # Unrelated one-off purchases
    transactions.append(make_transaction("oneoff_1", date(2025, 2, 17), 349.0, "CARTE FNAC TELEVISION"))
    transactions.append(make_transaction("oneoff_2", date(2025, 4, 9), 45.0, "CARTE RESTAURANT LE PETIT"))

    return transactions


@pytest.fixture
def seeded(repositories: dict, sample_transactions: list[Transaction]) -> dict:
    """Repositories pre-loaded with the sample history"""
    for transaction in sample_transactions:
        repositories["transactions"].add(transaction)
    return repositories
