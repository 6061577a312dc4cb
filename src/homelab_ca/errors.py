"""
Exception hierarchy for certificate issuance.

Every fatal condition raised by an issuer derives from CAError so the CLI can
report it with an [ERROR] prefix and exit non-zero. Verification failures are
never raised; they are returned as CheckResult values by the verifier.
"""

from __future__ import annotations


class CAError(Exception):
    """Base class for all fatal issuance errors."""


class PreconditionError(CAError):
    """A required input (ancestor certificate, layout, profile) is missing."""


class ProfileError(PreconditionError):
    """A configuration profile file is missing or malformed."""


class UniquenessViolation(PreconditionError):
    """The subject already exists and unique_subject is enforced."""

    def __init__(self, common_name: str, what: str = "Certificate"):
        self.common_name = common_name
        super().__init__(
            f"unique_subject is enabled and {what} with Common Name "
            f"{common_name!r} already exists"
        )


class OperationAborted(CAError):
    """The operator declined to overwrite an existing certificate."""


class SubOperationError(CAError):
    """
    A cryptographic or filesystem step failed mid-run.

    Attributes:
        step (str): Human readable name of the step that failed.
        cause (Exception | None): Underlying exception, if any.
    """

    def __init__(self, step: str, cause: Exception | None = None):
        self.step = step
        self.cause = cause
        msg = f"Failed to {step}"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)
