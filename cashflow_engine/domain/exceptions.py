"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class InsufficientDataError(DomainException):
    """Not enough transaction history to detect or project meaningfully"""

    pass


class InvalidParameterError(DomainException):
    """Caller supplied an out-of-range parameter (horizon, simulation count, edits)"""

    pass


class DuplicateDetectionError(DomainException):
    """Candidate matches an already validated recurrence"""

    def __init__(self, message: str, recurrence_id: str | None = None):
        super().__init__(message)
        self.recurrence_id = recurrence_id


class InvalidStatusTransitionError(DomainException):
    """Candidate is not in a state that allows the requested transition"""

    pass


class InvalidTransactionDataError(DomainException):
    """Transaction data is malformed or inconsistent with its recurrence"""

    pass


class RecurrenceNotFoundError(DomainException):
    """Recurrence or candidate does not exist for this user"""

    pass


class TransactionNotFoundError(DomainException):
    """Transaction does not exist for this user"""

    pass


class SimulationCancelledError(DomainException):
    """Simulation aborted by deadline or cancellation token"""

    pass
