from __future__ import annotations

import json

from app.lookup.models import (
    NOT_FOUND,
    ExtractionResult,
    FetchStatus,
    Job,
    JobOutcome,
    JobStatus,
    LookupKey,
)


def test_lookup_key_is_zero_padded_to_digit_width() -> None:
    key = LookupKey.from_index("112", 7, 4)

    assert key.service_number == "0007"
    assert key.composite == "112 0007"


def test_job_max_number_follows_digit_width() -> None:
    assert Job(id=1, circle_code="112", digit_width=1).max_number == 9
    assert Job(id=1, circle_code="112", digit_width=6).max_number == 999_999


def test_failed_result_carries_sentinels_and_composite() -> None:
    result = ExtractionResult.failed(LookupKey("112", "042"))

    assert result.fetch_status is FetchStatus.FAILED
    assert result.service_no == "112 042"
    assert result.customer_name == NOT_FOUND
    assert result.bill_amount == NOT_FOUND


def test_to_row_maps_status_and_search_info() -> None:
    result = ExtractionResult(
        service_no="112 042",
        unique_service_no="U1",
        fetch_status=FetchStatus.SUCCESS,
        processed_at="2024-05-01T10:00:00Z",
        circle_code="112",
        service_number="042",
    )

    row = result.to_row()

    assert row["fetch_status"] == "Success"
    assert row["status"] == JobStatus.COMPLETED.value
    assert json.loads(row["search_info"]) == {
        "circle_code": "112",
        "service_number": "042",
        "processed_at": "2024-05-01T10:00:00Z",
    }


def test_job_outcome_failed_count() -> None:
    outcome = JobOutcome(job_id=1, circle_code="112", total=10, processed=7, success=5)

    assert outcome.failed == 2
    assert outcome.as_dict()["failed"] == 2
