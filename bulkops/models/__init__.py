"""Pydantic data models for bulkops."""

from bulkops.models.batch_result import BatchResult, OutcomeStatus, RecordOutcome
from bulkops.models.config import ClientSettings, Config, DeletionMode, DriverSettings
from bulkops.models.connection import AuthType, ConnectionDescriptor
from bulkops.models.record import (
    BatchRequest,
    OperationKind,
    Record,
    RecordReference,
    RequestHints,
)
from bulkops.models.run_report import PhaseSummary, SampleRunReport

__all__ = [
    "AuthType",
    "BatchRequest",
    "BatchResult",
    "ClientSettings",
    "Config",
    "ConnectionDescriptor",
    "DeletionMode",
    "DriverSettings",
    "OperationKind",
    "OutcomeStatus",
    "PhaseSummary",
    "Record",
    "RecordOutcome",
    "RecordReference",
    "RequestHints",
    "SampleRunReport",
]
