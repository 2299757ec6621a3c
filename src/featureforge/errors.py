"""
Error types raised by featureforge.

Errors fall into five families:

- Declaration errors: raised while building a registry (duplicate names,
  unknown references, type-incompatible operators, cycles).
- Resolution errors: raised while planning a request.
- I/O errors: raised by source adapters after their retries are exhausted.
- Data-quality errors: schema mismatches and validation failures,
  aggregated into one report per request.
- Staleness: a warning or an error depending on the configured thresholds.

Every error renders a readable message with optional ``Caused by:`` and
``Hint:`` sections, and keeps the offending view/field/entity identifiers
as attributes so callers can act on them.
"""

from __future__ import annotations

import traceback
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from featureforge.validation import Violation


class FeatureStoreError(Exception):
    """
    Base class for all featureforge errors.

    Attributes:
        message: Human-readable description of the problem
        hint: Optional suggestion for fixing the problem
        cause: Optional underlying exception
    """

    def __init__(
        self,
        message: str,
        hint: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        self.message = message
        self.hint = hint
        self.cause = cause
        super().__init__(self._format())

    def _format(self) -> str:
        parts = [self.message]

        if self.cause is not None:
            parts.append(
                f"\nCaused by: {type(self.cause).__name__}: {self.cause}"
            )
            tb = _filtered_traceback(self.cause)
            if tb:
                parts.append(tb)

        if self.hint:
            parts.append(f"\nHint: {self.hint}")

        return "\n".join(parts)


def _filtered_traceback(exc: Exception) -> str:
    """Render a traceback without frames from installed libraries."""
    frames = traceback.extract_tb(exc.__traceback__)
    user_frames = [
        frame
        for frame in frames
        if "site-packages" not in frame.filename
        and "featureforge" not in frame.filename
    ]
    if not user_frames:
        return ""
    return "".join(traceback.format_list(user_frames)).rstrip()


# =============================================================================
# Declaration-time errors
# =============================================================================


class DeclarationError(FeatureStoreError):
    """Base class for errors raised while building a registry."""


class DuplicateNameError(DeclarationError):
    """Raised when a view, contract, entity or field name collides."""

    def __init__(self, kind: str, name: str, hint: str | None = None) -> None:
        self.kind = kind
        self.name = name
        super().__init__(f"Duplicate {kind} name: '{name}'", hint=hint)


class InvalidTypeError(DeclarationError):
    """Raised when an operator is applied to an incompatible field type."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        hint: str | None = None,
    ) -> None:
        self.field = field
        super().__init__(message, hint=hint)


class UnknownReferenceError(DeclarationError):
    """Raised when a derived feature references an undeclared field."""

    def __init__(self, field: str, reference: str, hint: str | None = None) -> None:
        self.field = field
        self.reference = reference
        super().__init__(
            f"Field '{field}' references undeclared field '{reference}'",
            hint=hint or "Register the view that declares the referenced field first.",
        )


class CyclicDependencyError(DeclarationError):
    """Raised when derived features depend on each other in a cycle."""

    def __init__(self, cycle: Sequence[str]) -> None:
        self.cycle = list(cycle)
        path = " -> ".join([*self.cycle, self.cycle[0]]) if self.cycle else ""
        super().__init__(
            f"Cyclic dependency detected: {path}",
            hint="Derived features must form an acyclic graph.",
        )


class DefinitionsLoadError(FeatureStoreError):
    """Raised when a definitions file or schema document cannot be loaded."""


# =============================================================================
# Resolution errors
# =============================================================================


class NotFoundError(FeatureStoreError):
    """Raised when a name does not resolve to a registered node."""

    def __init__(
        self,
        kind: str,
        name: str,
        available: Sequence[str] | None = None,
    ) -> None:
        self.kind = kind
        self.name = name
        hint = None
        if available:
            hint = f"Available {kind}s: {', '.join(sorted(available))}"
        super().__init__(f"Unknown {kind}: '{name}'", hint=hint)


class UnsatisfiableRequestError(FeatureStoreError):
    """Raised when a required ancestor field has no reachable source."""

    def __init__(self, view: str, fields: Sequence[str], hint: str | None = None) -> None:
        self.view = view
        self.fields = list(fields)
        super().__init__(
            f"No source can provide fields {self.fields} of '{view}'",
            hint=hint or f"Set a batch_source on '{view}' or call update_source_for().",
        )


# =============================================================================
# I/O errors
# =============================================================================


class MissingSourceError(FeatureStoreError):
    """Raised when a view has no adapter for the requested operation."""

    def __init__(self, view: str, message: str | None = None) -> None:
        self.view = view
        super().__init__(message or f"View '{view}' has no source configured")


class SourceUnavailableError(FeatureStoreError):
    """Raised when a source adapter stays unreachable after its retries."""

    def __init__(
        self,
        source: str,
        attempts: int,
        cause: Exception | None = None,
    ) -> None:
        self.source = source
        self.attempts = attempts
        super().__init__(
            f"Source '{source}' unavailable after {attempts} attempt(s)",
            cause=cause,
        )


class CancelledError(FeatureStoreError):
    """Raised when a request is cancelled through its cancellation token."""

    def __init__(self, request: str | None = None) -> None:
        self.request = request
        label = f" '{request}'" if request else ""
        super().__init__(f"Request{label} was cancelled")


# =============================================================================
# Data-quality errors
# =============================================================================


class SchemaMismatchError(FeatureStoreError):
    """Raised when a source returns a column of the wrong type."""

    def __init__(
        self,
        view: str,
        field: str,
        expected: str,
        actual: str,
    ) -> None:
        self.view = view
        self.field = field
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Field '{view}.{field}' expected {expected}, source returned {actual}",
            hint="Only numeric widening (int32 -> int64/float64, float32 -> float64) is applied automatically.",
        )


class ValidationError(FeatureStoreError):
    """
    Raised when the assembled table violates declared field rules.

    Attributes:
        violations: Every violation found, not just the first one
    """

    def __init__(self, violations: Sequence[Violation], request: str | None = None) -> None:
        self.violations = list(violations)
        self.request = request
        label = f" for '{request}'" if request else ""
        lines = [f"Validation failed{label}: {len(self.violations)} violation(s)"]
        for violation in self.violations:
            lines.append(f"  - {violation.describe()}")
        super().__init__(
            "\n".join(lines),
            hint="Use with_diagnostics() to receive the data together with the report.",
        )


# =============================================================================
# Staleness
# =============================================================================


class StalenessError(FeatureStoreError):
    """Raised when a source is older than its freshness threshold."""

    def __init__(self, view: str, age: Any, threshold: Any) -> None:
        self.view = view
        self.age = age
        self.threshold = threshold
        super().__init__(
            f"View '{view}' is stale: newest row is {age} old, threshold is {threshold}",
            hint="Refresh the source or relax the view's freshness thresholds.",
        )


class StalenessWarning(UserWarning):
    """Emitted when a source is older than its acceptable freshness."""

    def __init__(self, view: str, age: Any, threshold: Any) -> None:
        self.view = view
        self.age = age
        self.threshold = threshold
        super().__init__(
            f"View '{view}' newest row is {age} old, acceptable freshness is {threshold}"
        )


# =============================================================================
# Configuration
# =============================================================================


class ProfileError(FeatureStoreError):
    """Raised when featureforge.yaml is missing, invalid or incomplete."""
