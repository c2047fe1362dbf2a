"""Service health check utilities."""

from __future__ import annotations

from typing import TYPE_CHECKING

from bulkops.core.errors import BulkOpsError
from bulkops.utils.logger import get_logger

if TYPE_CHECKING:
    from bulkops.services.protocols import DataServiceProtocol

logger = get_logger(__name__)


def check_service_health(service: DataServiceProtocol) -> bool:
    """Check that a connected handle is usable and reports a parallelism hint."""
    try:
        return service.is_ready() and service.recommended_parallelism() >= 1
    except BulkOpsError as exc:
        logger.warning("service_health_check_failed", error=str(exc))
        return False
