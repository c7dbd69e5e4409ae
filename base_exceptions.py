from enum import Enum
from typing import List, Optional


class ErrorKind(str, Enum):
    """Failure categories reported in step outcomes and publish results"""
    ELEMENT_NOT_FOUND = "ElementNotFound"
    STEP_TIMEOUT = "StepTimeout"
    DISQUALIFYING_STEP_FAILURE = "DisqualifyingStepFailure"
    DEADLINE_EXCEEDED = "DeadlineExceeded"
    TRANSPORT_FAULT = "TransportFault"


class AutomationError(Exception):
    """Base class for errors raised by the publishing automation"""
    kind = ErrorKind.DISQUALIFYING_STEP_FAILURE

    def __init__(self, message="Automation error"):
        self.message = message
        super().__init__(self.message)


class TransportFault(AutomationError):
    """Raised when the browser or page is gone (crash, closed target, aborted navigation)"""
    kind = ErrorKind.TRANSPORT_FAULT


class TargetDefinitionError(AutomationError):
    """Raised when a target's selector set or step sequence is inconsistent"""


class ListingValidationError(ValueError):
    """Raised when the incoming event description is missing or malforming fields"""

    def __init__(self, missing: Optional[List[str]] = None, invalid: Optional[List[str]] = None):
        self.missing = list(missing or [])
        self.invalid = list(invalid or [])
        parts = []
        if self.missing:
            parts.append(f"missing required fields: {', '.join(self.missing)}")
        if self.invalid:
            parts.append(f"invalid fields: {', '.join(self.invalid)}")
        self.message = "; ".join(parts) or "invalid event data"
        super().__init__(self.message)
