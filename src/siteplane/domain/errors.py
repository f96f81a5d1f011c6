"""Typed error taxonomy returned to orchestrating callers."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from siteplane.isolation.enforcer import EnforcementReport


class SiteplaneError(Exception):
    """Base class for all control-plane errors."""


class NotFoundError(SiteplaneError, LookupError):
    """Raised when a site, hostname, or process cannot be found."""


class ConflictError(SiteplaneError):
    """Raised when a hostname (domain or alias) is already claimed by another site."""

    def __init__(self, message: str, *, hostname: str | None = None) -> None:
        self.hostname = hostname
        super().__init__(message)


class ValidationError(SiteplaneError, ValueError):
    """Raised for invalid input: unknown runtime version, malformed hostnames or worker config."""


class QuotaExceededError(SiteplaneError):
    """Raised when an owner already has ``max_sites`` sites."""

    def __init__(self, owner_id: str, limit: int) -> None:
        self.owner_id = owner_id
        self.limit = limit
        super().__init__(f"site limit reached for owner {owner_id!r} (max_sites={limit})")


class RegistryStoreError(SiteplaneError):
    """Raised when registry snapshots cannot be read, parsed, or written."""


class ProvisioningError(SiteplaneError):
    """Raised when a site directory tree or landing document cannot be created."""


class GenerationError(SiteplaneError):
    """Raised when a proxy document cannot be rendered or written."""


class EnforcementError(SiteplaneError):
    """Raised when an isolation operation fails."""


class PartialFailureError(EnforcementError):
    """Raised when some isolation sub-controls failed; the others remain applied."""

    def __init__(self, report: EnforcementReport) -> None:
        self.report = report
        details = "; ".join(f"{name}: {reason}" for name, reason in report.failed)
        super().__init__(
            f"failed to apply some limits for owner {report.owner_id!r}: {details}"
        )


__all__ = [
    "ConflictError",
    "EnforcementError",
    "GenerationError",
    "NotFoundError",
    "PartialFailureError",
    "ProvisioningError",
    "QuotaExceededError",
    "RegistryStoreError",
    "SiteplaneError",
    "ValidationError",
]
