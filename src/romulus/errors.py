# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/romulus/errors.py

from __future__ import annotations

from typing import Any, Dict, Optional, Sequence


class RomulusError(RuntimeError):
    """Base class for every failure raised by the engine."""

    kind = "error"

    def __init__(self, detail: str, resource: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        self.resource = resource

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "resource": self.resource, "detail": self.detail}


class ConfigurationError(RomulusError):
    """Config file missing, unparsable or failing schema validation."""

    kind = "configuration"


class DuplicateResourceError(ConfigurationError):
    kind = "duplicate_resource"


class ReferentialIntegrityError(RomulusError):
    """A resource points at a pool or network that exists nowhere."""

    kind = "referential_integrity"

    def __init__(self, resource: str, missing: str, detail: Optional[str] = None):
        self.missing = missing
        super().__init__(
            detail or f"{resource} references missing {missing}",
            resource=resource,
        )


class PlanValidationError(RomulusError):
    kind = "plan_validation"


class PlanOrderingError(PlanValidationError):
    kind = "plan_ordering"


class UnnamedResourceError(PlanValidationError):
    kind = "unnamed_resource"


class BackendCommandError(RomulusError):
    """A backend command exited non-zero."""

    kind = "backend_command"

    def __init__(
        self,
        argv: Sequence[str],
        exit_code: Optional[int],
        output: str = "",
        resource: Optional[str] = None,
    ):
        self.argv = list(argv)
        self.exit_code = exit_code
        self.output = output
        super().__init__(
            f"command failed (rc={exit_code}) for {self.argv!r}\n{output}".rstrip(),
            resource=resource,
        )


class BackendTimeoutError(BackendCommandError):
    kind = "backend_timeout"


class BackendUnavailableError(BackendCommandError):
    """The hypervisor connection itself is gone; nothing else can succeed."""

    kind = "backend_unavailable"


class PayloadRenderError(RomulusError):
    kind = "payload_render"


class RetryError(RomulusError):
    kind = "retry_exhausted"
