"""Bank statement reader - CSV exports to normalized transactions"""

import hashlib
import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pandas as pd

from cashflow_engine.domain.exceptions import InvalidTransactionDataError
from cashflow_engine.domain.models import Transaction, TransactionKind, normalize_transaction

logger = logging.getLogger(__name__)

# Patterns used to identify columns, first match wins
DATE_PATTERNS = ["date", "posted", "value date"]
AMOUNT_PATTERNS = ["amount", "montant", "amt"]
DESCRIPTION_PATTERNS = ["description", "libelle", "label", "details", "memo", "merchant"]
KIND_PATTERNS = ["kind", "nature", "type"]
CATEGORY_PATTERNS = ["category", "categorie"]

KIND_ALIASES: Dict[str, TransactionKind] = {
    "income": TransactionKind.income,
    "credit": TransactionKind.income,
    "revenu": TransactionKind.income,
    "expense": TransactionKind.expense,
    "debit": TransactionKind.expense,
    "depense": TransactionKind.expense,
}


def infer_column(df: pd.DataFrame, patterns: Sequence[str]) -> Optional[str]:
    for pattern in patterns:
        for col in df.columns:
            if pattern in str(col).lower():
                return col
    return None


def statement_transaction_id(user_id: str, on, amount: float, description: str, occurrence: int) -> str:
    """Stable id so that importing the same statement twice yields the same ids"""
    key = f"{user_id}|{on.isoformat()}|{amount:.2f}|{description}|{occurrence}"
    return hashlib.sha1(key.encode("utf-8")).hexdigest()[:20]


class StatementReader:
    """Reads bank statement exports into Transactions for one user"""

    def __init__(self, dayfirst: bool = False):
        self.dayfirst = dayfirst

    def _load(self, path: Path) -> pd.DataFrame:
        if path.suffix.lower() != ".csv":
            raise InvalidTransactionDataError(f"Unsupported statement format: {path.suffix}")
        try:
            return pd.read_csv(path)
        except (OSError, ValueError) as e:
            raise InvalidTransactionDataError(f"Cannot read statement {path.name}: {e}") from e

    def read(self, path: str | Path, user_id: str) -> List[Transaction]:
        """
        Parse a statement file.

        Amounts may be signed (negative = expense) or unsigned with a kind
        column. Rows without a valid date or amount are skipped.

        Raises:
            InvalidTransactionDataError: On unreadable files or missing columns
        """
        path = Path(path)
        df = self._load(path)

        date_col = infer_column(df, DATE_PATTERNS)
        amount_col = infer_column(df, AMOUNT_PATTERNS)
        desc_col = infer_column(df, DESCRIPTION_PATTERNS)
        if not date_col or not amount_col:
            raise InvalidTransactionDataError(f"{path.name}: date and amount columns are required")
        kind_col = infer_column(df, KIND_PATTERNS)
        category_col = infer_column(df, CATEGORY_PATTERNS)

        dates = pd.to_datetime(df[date_col], errors="coerce", dayfirst=self.dayfirst)
        amounts = pd.to_numeric(df[amount_col], errors="coerce")

        transactions: List[Transaction] = []
        seen: Dict[tuple, int] = {}
        skipped = 0
        for idx in df.index:
            if pd.isna(dates[idx]) or pd.isna(amounts[idx]):
                skipped += 1
                continue

            on = dates[idx].date()
            amount = float(amounts[idx])
            description = str(df.at[idx, desc_col]).strip() if desc_col and pd.notna(df.at[idx, desc_col]) else ""
            kind = None
            if kind_col and pd.notna(df.at[idx, kind_col]):
                kind = KIND_ALIASES.get(str(df.at[idx, kind_col]).strip().lower())
            category = str(df.at[idx, category_col]) if category_col and pd.notna(df.at[idx, category_col]) else None

            # Identical rows on the same day are distinct transactions
            key = (on, amount, description)
            seen[key] = seen.get(key, 0) + 1

            transactions.append(
                normalize_transaction(
                    statement_transaction_id(user_id, on, amount, description, seen[key]),
                    user_id,
                    on,
                    amount,
                    description,
                    kind=kind,
                    category_id=category,
                )
            )

        if skipped:
            logger.warning(
                f"Skipped {skipped} unparseable statement rows",
                extra={"user_id": user_id, "statement": path.name},
            )
        return transactions
