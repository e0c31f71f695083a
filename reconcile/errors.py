from typing import Iterable, List


class ReconciliationError(Exception):
    """Base class for reconciliation failures"""


class InvalidTaxonomy(ReconciliationError):
    """Reference data that cannot be turned into a snapshot"""


class ConfigError(ReconciliationError):
    """Missing or malformed pipeline configuration"""


class DuplicateFinalName(ReconciliationError):
    """Two or more rows share a final name where a one-to-one key is required"""

    def __init__(self, names: Iterable[str], message: str = None):
        self.names: List[str] = sorted(set(names))
        if message is None:
            preview = ', '.join(self.names[:5])
            more = f" (+{len(self.names) - 5} more)" if len(self.names) > 5 else ''
            message = f"Duplicate final names: {preview}{more}"
        super().__init__(message)


class StructuralMergeFailure(ReconciliationError):
    """The join is not one-to-one after disambiguation"""
