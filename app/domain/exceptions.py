"""Centralized exception hierarchy for the irrigation worker.

All domain and service exceptions inherit from :class:`IrrigationWorkerError`
so that the top-level loops can catch a single base class when they need a
broad safety net, yet still match on specific subclasses where narrower
handling is appropriate.

Hierarchy
---------
::

    IrrigationWorkerError (base)
    ├── ValidationError            (store document / entry is malformed)
    ├── ConfigurationError         (missing / invalid startup config, fatal)
    ├── ServiceError               (business-logic failure)
    │   ├── RepositoryError        (job queue / SQLite)
    │   └── ExternalServiceError   (document store transports)
    │       ├── TransportError
    │       │   └── TransportTimeoutError
    │       └── StoreUnavailableError  (primary and fallback both failed)
    └── JobExecutionError          (watering job failed; actuators forced off)
"""

from __future__ import annotations


class IrrigationWorkerError(Exception):
    """Base exception for all irrigation worker errors.

    Parameters
    ----------
    message:
        Human-readable description, logged as-is.
    detail:
        Optional machine-readable context dict attached to the error for
        structured logging.
    """

    def __init__(self, message: str = "", *, detail: dict | None = None) -> None:
        super().__init__(message)
        self.detail = detail or {}


class ValidationError(IrrigationWorkerError):
    """A document read from the store does not match the expected shape."""


class ConfigurationError(IrrigationWorkerError):
    """Missing or invalid startup configuration."""


# ── Service errors ───────────────────────────────────────────────────


class ServiceError(IrrigationWorkerError):
    """Business-logic failure in a service method."""


class RepositoryError(ServiceError):
    """Job queue / persistence layer failure."""


class ExternalServiceError(ServiceError):
    """Document store or network dependency failure."""


class TransportError(ExternalServiceError):
    """A single store transport (SDK or REST) failed a call."""

    def __init__(self, message: str = "", *, transport: str = "", detail: dict | None = None) -> None:
        super().__init__(message, detail=detail)
        self.transport = transport


class TransportTimeoutError(TransportError):
    """A store transport did not answer within its timeout."""


class StoreUnavailableError(ExternalServiceError):
    """Both the primary and the fallback transport failed."""


# ── Job errors ───────────────────────────────────────────────────────


class JobExecutionError(IrrigationWorkerError):
    """A watering job failed after (or while) switching actuators.

    ``safety_off`` records whether the best-effort all-off write succeeded.
    """

    def __init__(
        self,
        message: str = "",
        *,
        job_id: str = "",
        safety_off: bool = False,
        detail: dict | None = None,
    ) -> None:
        super().__init__(message, detail=detail)
        self.job_id = job_id
        self.safety_off = safety_off
