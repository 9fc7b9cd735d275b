"""Error types for the arc engine, the profile store and plot generation.

Arc errors signal caller misuse of the state machine and always propagate.
Storage errors are raised by backends and caught at the profile store
boundary, where they turn into degraded results plus a log event.
"""

from __future__ import annotations

from dataclasses import dataclass, field


class PlotArcError(Exception):
    """Base class for all plotarc errors."""


# ---------------------------------------------------------------------------
# Arc state machine
# ---------------------------------------------------------------------------


@dataclass
class UnknownTemplateError(PlotArcError):
    """Raised when starting an arc from a template that cannot be used.

    Attributes:
        template_id: The requested template id.
        available: Template ids known to the catalog.
        reason: Why the template was rejected ("unknown" or "empty").
    """

    template_id: str
    available: list[str] = field(default_factory=list)
    reason: str = "unknown"

    def __post_init__(self) -> None:
        if self.reason == "empty":
            msg = f"Arc template '{self.template_id}' has no phases"
        else:
            msg = f"Unknown arc template '{self.template_id}'"
            if self.available:
                msg += f" (available: {', '.join(sorted(self.available))})"
        super().__init__(msg)


@dataclass
class NoActiveArcError(PlotArcError):
    """Raised when an operation needs an active arc and none is running.

    Attributes:
        operation: Name of the operation that was attempted.
    """

    operation: str

    def __post_init__(self) -> None:
        super().__init__(f"Cannot {self.operation}: no active arc")


@dataclass
class InvalidBranchError(PlotArcError):
    """Raised when a branch selection is not offered by the current phase.

    Attributes:
        branch: The rejected branch value.
        phase: Current phase name.
        options: Branch options the phase does offer.
    """

    branch: str
    phase: str
    options: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        msg = f"Branch '{self.branch}' is not available from phase '{self.phase}'"
        if self.options:
            msg += f" (options: {', '.join(self.options)})"
        else:
            msg += " (phase has no branches)"
        super().__init__(msg)


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


class StorageError(PlotArcError):
    """Base class for backend failures handled by the profile store."""


@dataclass
class StorageQuotaExceeded(StorageError):
    """Raised by a fallback cache when a write would exceed its quota.

    Attributes:
        key: Storage key that was being written.
        needed: Bytes the write required.
        quota: Total quota of the cache in bytes.
    """

    key: str
    needed: int = 0
    quota: int = 0

    def __post_init__(self) -> None:
        super().__init__(
            f"Storage quota exceeded writing '{self.key}' "
            f"({self.needed} bytes needed, quota {self.quota})"
        )


@dataclass
class StorageUnavailable(StorageError):
    """Raised when the authoritative store cannot be reached.

    Attributes:
        operation: Backend operation ("get" or "put").
        detail: Underlying error text.
    """

    operation: str
    detail: str = ""

    def __post_init__(self) -> None:
        msg = f"Authoritative store unavailable during {self.operation}"
        if self.detail:
            msg += f": {self.detail}"
        super().__init__(msg)


@dataclass
class MalformedRecord(StorageError):
    """Raised when a persisted record cannot be decoded or validated.

    Attributes:
        key: Storage key of the corrupt record.
        detail: Decoder or validator message.
    """

    key: str
    detail: str = ""

    def __post_init__(self) -> None:
        msg = f"Malformed record '{self.key}'"
        if self.detail:
            msg += f": {self.detail}"
        super().__init__(msg)


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


@dataclass
class GenerationFailure(PlotArcError):
    """Raised when the text generator fails or returns nothing usable.

    Attributes:
        detail: Description of the failure.
    """

    detail: str

    def __post_init__(self) -> None:
        super().__init__(f"Plot generation failed: {self.detail}")
