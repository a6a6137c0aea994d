"""
Search, filter, sort, paginate and CSV export over normalized campaigns.

Every function returns a new list and leaves its input untouched.
"""

import csv
import io
import math
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from adsproxy.models.entities import CampaignRecord

SORT_KEYS = ("name", "objective", "status", "daily_budget", "created_at")

CSV_FIELDS = ["id", "name", "objective", "status", "daily_budget_major_units", "created_at"]
CSV_FIELD_NAMES = {
    "id": "Campaign ID",
    "name": "Campaign Name",
    "objective": "Objective",
    "status": "Status",
    "daily_budget_major_units": "Daily Budget",
    "created_at": "Created Time",
}


def search(records: Sequence[CampaignRecord], term: Optional[str]) -> List[CampaignRecord]:
    if not term or not term.strip():
        return list(records)
    needle = term.strip().lower()
    return [
        r for r in records
        if needle in r.name.lower()
        or needle in r.objective.lower()
        or needle in r.status.value.lower()
    ]


def filter_by_status(records: Sequence[CampaignRecord], status: Optional[str]) -> List[CampaignRecord]:
    if not status:
        return list(records)
    return [r for r in records if r.status.value == status.upper()]


def sort_records(
    records: Sequence[CampaignRecord],
    key: str = "created_at",
    descending: bool = True,
) -> List[CampaignRecord]:
    """Stable sort by one column; "N/A" budgets always go last."""
    if key not in SORT_KEYS:
        raise ValueError(f"Unsupported sort key: {key}")

    if key == "daily_budget":
        priced = [r for r in records if r.daily_budget_major_units != "N/A"]
        unpriced = [r for r in records if r.daily_budget_major_units == "N/A"]
        priced.sort(key=lambda r: Decimal(r.daily_budget_major_units), reverse=descending)
        return priced + unpriced

    if key == "created_at":
        return sorted(records, key=lambda r: r.created_at, reverse=descending)
    if key == "status":
        return sorted(records, key=lambda r: r.status.value, reverse=descending)
    return sorted(records, key=lambda r: getattr(r, key).lower(), reverse=descending)


def paginate(
    records: Sequence[CampaignRecord], page: int = 1, per_page: int = 10
) -> Tuple[List[CampaignRecord], int]:
    if per_page < 1:
        raise ValueError("per_page must be positive")
    total_pages = max(1, math.ceil(len(records) / per_page))
    page = min(max(page, 1), total_pages)
    start = (page - 1) * per_page
    return list(records[start:start + per_page]), total_pages


def to_csv(
    records: Sequence[CampaignRecord],
    fields: Optional[List[str]] = None,
    field_names: Optional[Dict[str, str]] = None,
) -> str:
    """Render records as CSV text; an empty input gives an empty string."""
    if not records:
        return ""
    fields = fields or CSV_FIELDS
    field_names = field_names if field_names is not None else CSV_FIELD_NAMES

    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow([field_names.get(f, f) for f in fields])
    for record in records:
        row = record.model_dump(mode="json")
        writer.writerow(["" if row.get(f) is None else row.get(f) for f in fields])
    return buf.getvalue().rstrip("\n")
