"""
Issuance Guard: decides whether an issuer may generate new material.

    NoExistingSubject -> CheckUniqueness -> Blocked           (unique_subject = yes, exists)
                                         -> ConfirmOverwrite  (unique_subject = no, exists)
                                         -> ProceedFresh      (nothing exists)
    ConfirmOverwrite -> ProceedFresh  on the exact answer "yes"
                     -> Aborted       otherwise

Only ProceedFresh lets generation continue. Blocked and Aborted raise.
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from .database import SerialDatabase
from .errors import OperationAborted, UniquenessViolation
from .models import CertificateRole

LOGGER = logging.getLogger(__name__)

# Called with the warning lines; returns the operator's answer
Confirm = Callable[[list[str]], str]

CONFIRM_ANSWER = "yes"


class GuardState(str, Enum):
    NO_EXISTING_SUBJECT = "NoExistingSubject"
    CHECK_UNIQUENESS = "CheckUniqueness"
    BLOCKED = "Blocked"
    CONFIRM_OVERWRITE = "ConfirmOverwrite"
    PROCEED_FRESH = "ProceedFresh"
    ABORTED = "Aborted"


_LABELS = {
    CertificateRole.TRUSTED_ID: "Trusted ID",
    CertificateRole.ROOT_CA: "Root CA",
    CertificateRole.INTERMEDIATE_CA: "Intermediate CA",
    CertificateRole.SERVER: "Certificate",
    CertificateRole.CLIENT: "Certificate",
}

_CONSEQUENCES = {
    CertificateRole.TRUSTED_ID: "This action will require REGENERATING THE ROOT CA, ALL SUB-CA CERTIFICATES, AND ALL ISSUED CERTIFICATES!",
    CertificateRole.ROOT_CA: "This action will require REGENERATING ALL SUB-CA CERTIFICATES AND ALL ISSUED CERTIFICATES!",
    CertificateRole.INTERMEDIATE_CA: "This action will require REGENERATING ALL ISSUED CERTIFICATES!",
}


def overwrite_warning(role: CertificateRole, common_name: str) -> list[str]:
    """Role specific warning shown before an overwrite is confirmed."""
    label = _LABELS[role]
    lines = [f"{label} {common_name!r} already exists and will be OVERWRITTEN!"]
    if role in _CONSEQUENCES:
        lines.append(_CONSEQUENCES[role])
        lines.append("If you continue, all issued certificates will become INVALID!")
    else:
        lines.append("The existing certificate, chain bundles and key for this name will be replaced.")
    return lines


def decline(_lines: list[str]) -> str:
    """Confirmation callback for non-interactive runs: never overwrite."""
    return "no"


class IssuanceGuard:
    """
    Evaluate the guard for one issuance.

    Args:
        db (SerialDatabase): Shared database (uniqueness policy + registry).
        confirm (Confirm | None): Asked when an overwrite needs confirmation.
            Defaults to declining.
    """

    def __init__(self, db: SerialDatabase, confirm: Optional[Confirm] = None):
        self.db = db
        self.confirm = confirm or decline
        self.state = GuardState.NO_EXISTING_SUBJECT

    def evaluate(self, role: CertificateRole, common_name: str, target: Path) -> GuardState:
        """
        Walk the state machine for a subject.

        Args:
            role (CertificateRole): Role being issued (selects warning text).
            common_name (str): Subject CN to check in the registry.
            target (Path): Certificate file the run would write.

        Returns:
            GuardState: Always PROCEED_FRESH on return.

        Raises:
            UniquenessViolation: Blocked (unique_subject = yes and subject exists).
            OperationAborted: Operator did not answer exactly "yes".
        """
        self.state = GuardState.CHECK_UNIQUENESS
        exists = target.exists() or self.db.subject_exists(common_name)

        if not exists:
            self.state = GuardState.PROCEED_FRESH
            return self.state

        if self.db.unique_subject:
            self.state = GuardState.BLOCKED
            LOGGER.debug("unique_subject is enabled and %s %r already exists", _LABELS[role], common_name)
            raise UniquenessViolation(common_name, _LABELS[role])

        self.state = GuardState.CONFIRM_OVERWRITE
        warning = overwrite_warning(role, common_name)
        for line in warning:
            LOGGER.info("%s", line)
        answer = self.confirm(warning)
        if answer != CONFIRM_ANSWER:
            self.state = GuardState.ABORTED
            LOGGER.info("Operation aborted by user.")
            raise OperationAborted("Operation aborted by user.")

        self.state = GuardState.PROCEED_FRESH
        return self.state
