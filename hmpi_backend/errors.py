# Error types raised by the HMPI normalizer, engine and collaborators
from typing import Any, List, Optional


class HMPIError(Exception):
    """Base class for all HMPI backend errors"""


class ValidationError(HMPIError):
    """Request or row is structurally invalid (missing fields, bad envelope)"""

    def __init__(self, message: str, missing_fields: Optional[List[str]] = None,
                 label: Optional[str] = None, row_number: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.missing_fields = missing_fields or []
        self.label = label
        self.row_number = row_number


class NoScoreableMetals(HMPIError):
    """Sample parsed fine but has no metal reading the engine can weight"""

    def __init__(self, message: str = 'No valid heavy metals found for HMPI calculation'):
        super().__init__(message)
        self.message = message


class RowParseError(HMPIError):
    """A CSV line could not be turned into a sample"""

    def __init__(self, message: str, row_number: Optional[int] = None, raw_data: Any = None):
        super().__init__(message)
        self.message = message
        self.row_number = row_number
        self.raw_data = raw_data


class UpstreamError(HMPIError):
    """Persistence or AI collaborator failed"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
