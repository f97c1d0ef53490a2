"""Exception hierarchy for the training subsystem."""


class TrainingError(Exception):
    """Base class for training subsystem errors."""
    pass


class InsufficientDataError(TrainingError):
    """Raised when an assembled batch is smaller than the mode requires."""

    def __init__(self, available: int, required: int):
        super().__init__("Insufficient training data")
        self.available = available
        self.required = required


class CheckpointError(TrainingError):
    """Raised when a checkpoint cannot be captured or persisted."""
    pass


class CheckpointRestoreError(CheckpointError):
    """Raised when the last good checkpoint cannot be reinstated."""
    pass


class FederationError(TrainingError):
    """Raised when a federated contribution cannot be delivered."""
    pass
