"""
Analytics - Aggregates over the Message Logs
============================================

Builds the dashboard numbers from the main and catalog logs with pandas.
Date ranges are inclusive calendar days in local time: startDate 00:00:00
through endDate 23:59:59. Either bound may be omitted.
"""

import logging
from dataclasses import asdict
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

import pandas as pd

from ..domain.models import TIMESTAMP_FORMAT, CatalogLogEntry, LogEntry, LogStatus
from ..domain.phone import normalize_phone

logger = logging.getLogger(__name__)

TOP_RECIPIENTS = 5
DELIVERED = [LogStatus.SENT.value, LogStatus.SEEN.value]
UNDELIVERED = [LogStatus.FAILED.value, LogStatus.INVALID.value]


def parse_date_range(start: Optional[str], end: Optional[str]) -> Tuple[Optional[datetime], Optional[datetime]]:
    """
    "YYYY-MM-DD" bounds to an inclusive datetime range.
    Raises ValueError for a malformed date.
    """
    lower = datetime.strptime(start, "%Y-%m-%d") if start else None
    upper = datetime.strptime(end, "%Y-%m-%d") + timedelta(days=1, seconds=-1) if end else None
    return lower, upper


def to_frame(entries: Iterable) -> pd.DataFrame:
    rows = [asdict(entry) for entry in entries]
    columns = list(LogEntry.__dataclass_fields__) if not rows else None
    df = pd.DataFrame(rows, columns=columns)
    df["phone"] = df["phone"].map(normalize_phone)
    df["sent_at"] = pd.to_datetime(df["timestamp"], format=TIMESTAMP_FORMAT, errors="coerce")
    return df


def filter_by_date(df: pd.DataFrame, start: Optional[datetime], end: Optional[datetime]) -> pd.DataFrame:
    if start is None and end is None:
        return df
    mask = df["sent_at"].notna()
    if start is not None:
        mask &= df["sent_at"] >= start
    if end is not None:
        mask &= df["sent_at"] <= end
    return df[mask]


def log_rows(entries: List, start: Optional[str] = None, end: Optional[str] = None) -> List[dict]:
    """Entries as JSON-ready dicts, optionally limited to a date range."""
    lower, upper = parse_date_range(start, end)
    return [
        _json_row(entry)
        for entry in entries
        if (lower is None and upper is None) or _within(entry.timestamp, lower, upper)
    ]


def _json_row(entry) -> dict:
    # seen_timestamp -> seenTimestamp
    row = {}
    for key, value in asdict(entry).items():
        head, *rest = key.split("_")
        row[head + "".join(part.title() for part in rest)] = value
    return row


def _within(timestamp: str, lower: Optional[datetime], upper: Optional[datetime]) -> bool:
    try:
        moment = datetime.strptime(timestamp, TIMESTAMP_FORMAT)
    except ValueError:
        return False
    return (lower is None or moment >= lower) and (upper is None or moment <= upper)


def empty_analytics() -> dict:
    return {
        "totalSent": 0,
        "totalSeen": 0,
        "viewRate": 0.0,
        "averageTimeToSee": 0.0,
        "totalCatalogs": 0,
        "totalFailed": 0,
        "uniqueRecipients": 0,
        "mostActiveHour": "-",
        "timeline": [],
        "hourlyTrend": [{"hour": f"{h}:00", "count": 0} for h in range(24)],
        "statusBreakdown": {status.value: 0 for status in LogStatus},
        "topRecipients": [],
        "topEngagedRecipients": [],
        "inactiveRecipients": [],
        "catalogStats": {"sent": 0, "notSent": 0, "viewed": 0, "conversionRate": 0.0, "avgViewTime": 0.0},
    }


def compute_analytics(
    entries: List[LogEntry],
    catalog_entries: List[CatalogLogEntry],
    start: Optional[str] = None,
    end: Optional[str] = None,
) -> dict:
    """Dashboard aggregates. Raises ValueError for a malformed date bound."""
    lower, upper = parse_date_range(start, end)
    logs = filter_by_date(to_frame(entries), lower, upper)
    catalogs = filter_by_date(to_frame(catalog_entries), lower, upper)

    result = empty_analytics()
    result["totalCatalogs"] = int(len(catalogs))
    if logs.empty:
        result["catalogStats"]["sent"] = int(catalogs["phone"].nunique())
        return result

    logs = logs.assign(
        delivered=logs["status"].isin(DELIVERED).astype(int),
        seen=(logs["status"] == LogStatus.SEEN.value).astype(int),
        time_to_see=pd.to_numeric(logs["time_to_see"], errors="coerce"),
    )

    total_sent = int(logs["delivered"].sum())
    total_seen = int(logs["seen"].sum())
    seen_rows = logs[logs["seen"] == 1]

    result.update({
        "totalSent": total_sent,
        "totalSeen": total_seen,
        "viewRate": round(total_seen / total_sent * 100, 2) if total_sent else 0.0,
        "averageTimeToSee": round(float(seen_rows["time_to_see"].sum()) / total_seen, 2) if total_seen else 0.0,
        "totalFailed": int(logs["status"].isin(UNDELIVERED).sum()),
        "uniqueRecipients": int(logs["phone"].nunique()),
        "statusBreakdown": {status.value: int((logs["status"] == status.value).sum()) for status in LogStatus},
    })

    # Hourly trend
    hours = logs["sent_at"].dropna().dt.hour.value_counts().sort_index()
    if not hours.empty:
        busiest = int(hours.idxmax())
        result["mostActiveHour"] = f"{busiest}:00 - {busiest + 1}:00"
    result["hourlyTrend"] = [{"hour": f"{h}:00", "count": int(hours.get(h, 0))} for h in range(24)]

    # Daily timeline
    dated = logs.dropna(subset=["sent_at"])
    daily = (
        dated.assign(date=dated["sent_at"].dt.strftime("%Y-%m-%d"))
        .groupby("date")[["delivered", "seen"]]
        .sum()
        .sort_index()
    )
    result["timeline"] = [
        {"date": date, "sent": int(row["delivered"]), "seen": int(row["seen"])}
        for date, row in daily.iterrows()
    ]

    # Recipients
    per_phone = logs.groupby("phone")[["delivered", "seen"]].sum()
    top = per_phone[per_phone["delivered"] > 0].sort_values("delivered", ascending=False, kind="stable")
    engaged = per_phone[per_phone["seen"] > 0].sort_values("seen", ascending=False, kind="stable")
    inactive = per_phone[per_phone["seen"] == 0]
    result["topRecipients"] = _counts(top["delivered"].head(TOP_RECIPIENTS))
    result["topEngagedRecipients"] = _counts(engaged["seen"].head(TOP_RECIPIENTS))
    result["inactiveRecipients"] = _counts(inactive["delivered"])

    # Catalog reach
    catalog_phones = set(catalogs["phone"])
    viewed = catalog_phones & set(engaged.index)
    view_times = seen_rows[seen_rows["phone"].isin(viewed)]["time_to_see"].dropna()
    result["catalogStats"] = {
        "sent": len(catalog_phones),
        "notSent": len(set(per_phone.index) - catalog_phones),
        "viewed": len(viewed),
        "conversionRate": round(len(viewed) / len(catalog_phones) * 100, 2) if catalog_phones else 0.0,
        "avgViewTime": round(float(view_times.mean()), 2) if not view_times.empty else 0.0,
    }
    return result


def _counts(series: pd.Series) -> List[dict]:
    return [{"phone": phone, "count": int(count)} for phone, count in series.items()]
