"""
Data-access contracts the engine expects from the surrounding application.

The domain never talks to a database directly; services receive
implementations of these interfaces (SQLAlchemy in production, anything
else in tests or other hosts).
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import List, Optional, Sequence, Set

from cashflow_engine.domain.models import (
    DetectionStatus,
    RecurrenceCandidate,
    Transaction,
    ValidatedRecurrence,
)


class TransactionRepository(ABC):
    """Read-only access to a user's transactions"""

    @abstractmethod
    def list_for_user(self, user_id: str, since: Optional[date] = None) -> List[Transaction]:
        """All transactions of the user, optionally from a date onwards, date ascending"""

    @abstractmethod
    def get(self, user_id: str, transaction_id: str) -> Optional[Transaction]:
        """One transaction, None when missing or owned by another user"""


class RecurrenceRepository(ABC):
    """Validated recurrences and pending detections"""

    @abstractmethod
    def list_active_for_user(self, user_id: str) -> List[ValidatedRecurrence]:
        pass

    @abstractmethod
    def list_for_user(self, user_id: str) -> List[ValidatedRecurrence]:
        """Active and inactive recurrences"""

    @abstractmethod
    def get(self, user_id: str, recurrence_id: str) -> Optional[ValidatedRecurrence]:
        pass

    @abstractmethod
    def create(self, recurrence: ValidatedRecurrence) -> ValidatedRecurrence:
        """Persist and return the recurrence with its identifier set"""

    @abstractmethod
    def update(self, recurrence: ValidatedRecurrence) -> ValidatedRecurrence:
        pass

    @abstractmethod
    def deactivate(self, user_id: str, recurrence_id: str) -> bool:
        """Soft delete; False when the recurrence does not exist"""

    @abstractmethod
    def delete(self, user_id: str, recurrence_id: str) -> bool:
        """Hard delete; False when the recurrence does not exist"""

    @abstractmethod
    def list_pending_candidates(self, user_id: str) -> List[RecurrenceCandidate]:
        """Pending detections, highest confidence first"""

    @abstractmethod
    def get_candidate(self, user_id: str, candidate_id: str) -> Optional[RecurrenceCandidate]:
        pass

    @abstractmethod
    def create_candidates(self, candidates: Sequence[RecurrenceCandidate]) -> List[RecurrenceCandidate]:
        pass

    @abstractmethod
    def clear_pending_candidates(self, user_id: str) -> int:
        """Delete pending detections before a new detection run; returns the count"""

    @abstractmethod
    def update_candidate_status(
        self,
        candidate_id: str,
        status: DetectionStatus,
        recurrence_id: Optional[str] = None,
    ) -> None:
        pass


class MappingRepository(ABC):
    """Explicit transaction <-> recurrence associations"""

    @abstractmethod
    def list_mapped_transaction_ids(self, user_id: str) -> Set[str]:
        pass

    @abstractmethod
    def list_for_recurrence(self, user_id: str, recurrence_id: str) -> List[str]:
        """Transaction ids mapped to the recurrence"""

    @abstractmethod
    def create(self, user_id: str, transaction_id: str, recurrence_id: str) -> None:
        """Idempotent: mapping an already mapped pair is a no-op"""

    @abstractmethod
    def remove(self, user_id: str, transaction_id: str, recurrence_id: str) -> bool:
        pass

    @abstractmethod
    def remove_for_recurrence(self, user_id: str, recurrence_id: str) -> int:
        pass


class BalanceSnapshotProvider(ABC):
    """Latest known account balance (e.g. from a bank sync)"""

    @abstractmethod
    def latest(self, user_id: str) -> Optional[float]:
        pass
