"""
Error types raised by the categorization engine
"""
from typing import Dict, List, Optional


class CategorizerError(Exception):
    """Base class for engine errors"""


class ValidationError(CategorizerError):
    """
    Raised when a rule, composite rule or merchant fails validation
    at create/update time.

    Matching never raises this; it is only produced by writes.
    """

    def __init__(self, message: str, errors: Optional[Dict[str, List[str]]] = None):
        self.errors = errors or {}
        if self.errors:
            details = '; '.join(
                f"{field} {msg}" for field, msgs in self.errors.items() for msg in msgs
            )
            message = f"{message}: {details}"
        super().__init__(message)


class NotFoundError(CategorizerError):
    """Raised when updating or merging a record that does not exist"""

    def __init__(self, resource: str, record_id):
        self.resource = resource
        self.record_id = record_id
        super().__init__(f"{resource} {record_id} not found")
