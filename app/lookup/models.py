"""Typed records shared by the lookup pipeline."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .utils import utc_now_iso

NOT_FOUND = "Not Found"


class JobStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# Only these moves are reachable; terminal states never revert.
ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


def is_allowed_transition(current: JobStatus | str | None, target: JobStatus | str) -> bool:
    try:
        current_status = JobStatus(current)
        target_status = JobStatus(target)
    except ValueError:
        return False
    return target_status in ALLOWED_TRANSITIONS[current_status]


class FetchStatus(str, Enum):
    SUCCESS = "Success"
    FAILED = "Failed"


@dataclass
class Job:
    """One circle-code row from the queue table."""

    id: int
    circle_code: str
    digit_width: int
    status: JobStatus = JobStatus.PENDING
    remarks: Optional[str] = None

    @classmethod
    def from_row(cls, row: Any) -> "Job":
        return cls(
            id=int(row["id"]),
            circle_code=str(row["circle_code"]).strip(),
            digit_width=int(row["digits_in_service_code"]),
            status=JobStatus(row["status"]),
            remarks=row["remarks"] if "remarks" in row.keys() else None,
        )

    @property
    def max_number(self) -> int:
        return 10 ** max(0, self.digit_width) - 1


@dataclass(frozen=True)
class LookupKey:
    circle_code: str
    service_number: str

    @classmethod
    def from_index(cls, circle_code: str, index: int, digit_width: int) -> "LookupKey":
        return cls(circle_code, str(index).zfill(digit_width))

    @property
    def composite(self) -> str:
        """The value typed into the service lookup form."""

        return f"{self.circle_code} {self.service_number}"


@dataclass(frozen=True)
class ExtractionResult:
    """Outcome of one lookup attempt; consumed once by the batcher."""

    service_no: str
    unique_service_no: str = NOT_FOUND
    customer_name: str = NOT_FOUND
    address: str = NOT_FOUND
    ero: str = NOT_FOUND
    mobile: str = NOT_FOUND
    bill_amount: str = NOT_FOUND
    fetch_status: FetchStatus = FetchStatus.FAILED
    processed_at: str = field(default_factory=utc_now_iso)
    circle_code: str = ""
    service_number: str = ""

    @classmethod
    def failed(cls, key: LookupKey) -> "ExtractionResult":
        return cls(
            service_no=key.composite,
            circle_code=key.circle_code,
            service_number=key.service_number,
        )

    @property
    def is_success(self) -> bool:
        return self.fetch_status == FetchStatus.SUCCESS

    def search_info(self) -> dict[str, str]:
        return {
            "circle_code": self.circle_code,
            "service_number": self.service_number,
            "processed_at": self.processed_at,
        }

    def to_row(self) -> dict[str, Any]:
        """Return the ``lookup_results`` column mapping for this result."""

        return {
            "service_no": self.service_no,
            "unique_service_no": self.unique_service_no,
            "customer_name": self.customer_name,
            "address": self.address,
            "ero": self.ero,
            "mobile": self.mobile,
            "bill_amount": self.bill_amount,
            "fetch_status": self.fetch_status.value,
            "search_info": json.dumps(self.search_info(), sort_keys=True),
            "status": JobStatus.COMPLETED.value if self.is_success else JobStatus.FAILED.value,
        }


@dataclass
class JobOutcome:
    """Aggregate counts reported by the job runner to the orchestrator."""

    job_id: int
    circle_code: str
    total: int
    processed: int = 0
    success: int = 0
    saved: int = 0
    dropped: int = 0
    page_failures: int = 0
    aborted: bool = False
    next_index: Optional[int] = None

    @property
    def failed(self) -> int:
        return self.processed - self.success

    def as_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "circle_code": self.circle_code,
            "total": self.total,
            "processed": self.processed,
            "success": self.success,
            "saved": self.saved,
            "dropped": self.dropped,
            "failed": self.failed,
            "page_failures": self.page_failures,
            "aborted": self.aborted,
            "next_index": self.next_index,
        }


__all__ = [
    "NOT_FOUND",
    "JobStatus",
    "FetchStatus",
    "Job",
    "LookupKey",
    "ExtractionResult",
    "JobOutcome",
    "ALLOWED_TRANSITIONS",
    "is_allowed_transition",
]
