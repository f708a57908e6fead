"""
Custom exception hierarchy for the application
"""


class OptimizerException(Exception):
    """Base exception for evaluation and budget errors"""
    pass


class InputError(OptimizerException):
    """Missing or invalid identifiers/arguments; the operation is not attempted"""
    pass


class NotFoundError(InputError):
    """A referenced record does not exist"""
    pass


class ProviderError(OptimizerException):
    """Error or timeout from an external provider"""
    pass


class EmbeddingError(ProviderError):
    """Error during embedding generation"""
    pass


class SearchError(ProviderError):
    """Error during vector search"""
    pass


class StorageError(OptimizerException):
    """Error during storage operations"""
    pass


# Store write failures surface under the name used by the error taxonomy
PersistenceError = StorageError


class BudgetExceeded(OptimizerException):
    """Pre-flight budget decision was abort"""

    def __init__(self, message: str, decision: dict = None):
        super().__init__(message)
        self.decision = decision or {}
