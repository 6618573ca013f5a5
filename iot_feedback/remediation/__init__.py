"""Change-log driven remediation."""

from .processor import (
    BatchResult,
    ChangeProcessor,
    ProcessorState,
    RemediationDirection,
    direction_of,
    extract_delta,
    remediation_target,
)
from .stream import ChangeRecord, ChangeRecordError, parse_change_event

__all__ = [
    "BatchResult",
    "ChangeProcessor",
    "ChangeRecord",
    "ChangeRecordError",
    "ProcessorState",
    "RemediationDirection",
    "direction_of",
    "extract_delta",
    "parse_change_event",
    "remediation_target",
]
