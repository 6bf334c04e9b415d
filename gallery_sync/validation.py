"""
Validation gate: decide which files of a batch may be uploaded.

Pure functions, no I/O. Every file is judged on its own so one bad file
never blocks the rest of the batch.
"""
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from .errors import ValidationError
from .models import MediaFile, RejectionKind, ValidationPolicy


@dataclass
class ValidationReport:
    """Admitted files (in submission order) and one error per rejected file."""
    admitted: List[MediaFile] = field(default_factory=list)
    rejected: List[ValidationError] = field(default_factory=list)

    def rejected_by(self, kind: RejectionKind) -> List[ValidationError]:
        return [r for r in self.rejected if r.kind == kind]


def _type_label(content_type: str) -> str:
    return content_type.replace("image/", "")


def check_file(
    file: MediaFile,
    occupied: int,
    policy: ValidationPolicy
) -> Optional[ValidationError]:
    """
    Check a single file.

    Args:
        file: Candidate file
        occupied: Slots already taken (gallery items plus files admitted so far)
        policy: Admission rules

    Returns:
        ValidationError describing the rejection, or None if admissible
    """
    if file.content_type not in policy.allowed_types:
        allowed = ", ".join(sorted(_type_label(t) for t in policy.allowed_types))
        return ValidationError(
            file,
            RejectionKind.UNSUPPORTED_TYPE,
            f"unsupported file type {file.content_type}, please select from: {allowed}",
        )

    if file.size > policy.max_size_bytes:
        return ValidationError(
            file,
            RejectionKind.TOO_LARGE,
            f"file is larger than {policy.max_size_mb:g}MB",
        )

    if occupied >= policy.max_items:
        return ValidationError(
            file,
            RejectionKind.CAPACITY_EXCEEDED,
            f"gallery limit reached, maximum {policy.max_items} photos allowed",
        )

    return None


def validate_batch(
    files: Iterable[MediaFile],
    current_count: int,
    policy: ValidationPolicy
) -> ValidationReport:
    """Split a candidate batch into admitted files and per-file rejections."""
    report = ValidationReport()
    for file in files:
        error = check_file(file, current_count + len(report.admitted), policy)
        if error is None:
            report.admitted.append(file)
        else:
            report.rejected.append(error)
    return report
