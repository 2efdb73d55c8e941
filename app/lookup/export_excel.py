"""Excel export of the lookup results table."""

from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Optional

import pandas as pd

from . import config, db
from .models import FetchStatus


def export_results_to_excel(dest_path: Optional[str] = None, *, limit: Optional[int] = None) -> str:
    """Write stored lookup results to an ``.xlsx`` workbook and return its path.

    Sheets: ``All``, ``Success``, ``Failed`` and a ``Summary_Status`` count
    per fetch status. An empty results table still yields a workbook with an
    informational row so downloads never 404.
    """

    df = pd.DataFrame(db.fetch_results(limit=limit))
    if df.empty:
        all_rows = pd.DataFrame([{"info": "No lookup results stored yet"}])
        success = pd.DataFrame()
        failed = pd.DataFrame()
        summary_status = pd.DataFrame()
    else:
        all_rows = df
        success = df[df["fetch_status"] == FetchStatus.SUCCESS.value].copy()
        failed = df[df["fetch_status"] != FetchStatus.SUCCESS.value].copy()
        summary_status = (
            df.groupby("fetch_status").size().reset_index(name="count").sort_values("count", ascending=False)
        )

    os.makedirs(config.EXPORTS_DIR, exist_ok=True)
    if not dest_path:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        dest_path = os.path.join(config.EXPORTS_DIR, f"lookup_results_{stamp}.xlsx")

    with pd.ExcelWriter(dest_path, engine="openpyxl") as writer:
        all_rows.to_excel(writer, index=False, sheet_name="All")
        success.to_excel(writer, index=False, sheet_name="Success")
        failed.to_excel(writer, index=False, sheet_name="Failed")
        summary_status.to_excel(writer, index=False, sheet_name="Summary_Status")

    return dest_path


__all__ = ["export_results_to_excel"]
