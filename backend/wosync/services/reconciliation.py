from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable, Sequence

from wosync.config import get_settings
from wosync.db.session import to_db_timestamp
from wosync.models.work_order import WorkOrder, natural_key
from wosync.models.workspace import ReadSource
from wosync.services import work_orders, workspaces
from wosync.services.read_router import ReadRouter
from wosync.services.sheets_service import LegacyRecord, LegacyStore

logger = logging.getLogger(__name__)

MAX_SAMPLE_SIZE = 200

SampleRecord = dict[str, Any]


@dataclass(frozen=True)
class RecordKey:
    work_order_number: str
    fm_key: str | None

    @property
    def key(self) -> str:
        return natural_key(self.work_order_number, self.fm_key)


@dataclass
class DriftEntry:
    key: RecordKey
    field: str
    primary_value: Any
    secondary_value: Any


@dataclass
class DriftReport:
    primary_source: str
    secondary_source: str
    primary_count: int
    secondary_count: int
    in_both: int
    only_in_primary: list[RecordKey]
    only_in_secondary: list[RecordKey]
    only_in_primary_count: int
    only_in_secondary_count: int
    compared_pairs: int
    fields: list[str]
    drift_counts: dict[str, int] = field(default_factory=dict)
    drift: list[DriftEntry] = field(default_factory=list)
    total_drift: int = 0


# -------------------------
# Field normalisation
# -------------------------

def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _status(value: Any) -> str | None:
    text = _text(value)
    return text.upper() if text else None


def _presence(value: Any) -> bool:
    # Timestamps are formatted differently in each store; only presence is meaningful
    return _text(value) is not None


def _amount(value: Any) -> Any:
    text = _text(value)
    if text is None:
        return None
    try:
        return Decimal(text.replace(",", "").replace("$", "")).normalize()
    except InvalidOperation:
        return text


_NORMALIZERS: dict[str, Callable[[Any], Any]] = {
    "status": _status,
    "signed_at": _presence,
    "amount": _amount,
}


def normalize_field(name: str, value: Any) -> Any:
    return _NORMALIZERS.get(name, _text)(value)


def _display(value: Any) -> Any:
    return str(value) if isinstance(value, Decimal) else value


# -------------------------
# Sampling
# -------------------------

def sample_from_db(work_order: WorkOrder) -> SampleRecord:
    return {
        "work_order_number": work_order.work_order_number,
        "fm_key": work_order.fm_key,
        "status": work_order.status,
        "signed_at": to_db_timestamp(work_order.signed_at) if work_order.signed_at else None,
        "amount": work_order.amount,
        "scheduled_date": work_order.scheduled_date,
        "customer_name": work_order.customer_name,
        "service_address": work_order.service_address,
        "currency": work_order.currency,
    }


def sample_from_legacy(record: LegacyRecord) -> SampleRecord:
    return {
        "work_order_number": record.get("wo_number"),
        "fm_key": record.get("fmKey"),
        "status": record.get("status"),
        "signed_at": record.get("signed_at"),
        "amount": record.get("amount"),
        "scheduled_date": record.get("scheduled_date"),
        "customer_name": record.get("customer_name"),
        "service_address": record.get("service_address"),
        "currency": record.get("currency"),
    }


def _index(records: Iterable[SampleRecord]) -> dict[str, tuple[RecordKey, SampleRecord]]:
    indexed: dict[str, tuple[RecordKey, SampleRecord]] = {}
    for record in records:
        wo_number = _text(record.get("work_order_number"))
        if not wo_number:
            continue
        record_key = RecordKey(work_order_number=wo_number, fm_key=_text(record.get("fm_key")))
        # Samples are newest first; keep the newest row for a duplicated key
        indexed.setdefault(record_key.key, (record_key, record))
    return indexed


def compare_records(
    primary: Sequence[SampleRecord],
    secondary: Sequence[SampleRecord],
    *,
    primary_source: str = ReadSource.DB.value,
    secondary_source: str = ReadSource.LEGACY.value,
    fields: Sequence[str] | None = None,
    compare_limit: int | None = None,
    max_entries: int | None = None,
    display_limit: int | None = None,
) -> DriftReport:
    """Set differences by natural key plus field drift on a bounded slice of the matches."""
    settings = get_settings()
    fields = list(fields if fields is not None else settings.reconcile_fields)
    compare_limit = settings.reconcile_compare_limit if compare_limit is None else compare_limit
    max_entries = settings.reconcile_max_entries if max_entries is None else max_entries
    display_limit = settings.reconcile_display_limit if display_limit is None else display_limit

    left = _index(primary)
    right = _index(secondary)

    only_left = [record_key for k, (record_key, _) in left.items() if k not in right]
    only_right = [record_key for k, (record_key, _) in right.items() if k not in left]
    matched = [k for k in left if k in right]

    report = DriftReport(
        primary_source=primary_source,
        secondary_source=secondary_source,
        primary_count=len(left),
        secondary_count=len(right),
        in_both=len(matched),
        only_in_primary=only_left[:display_limit],
        only_in_secondary=only_right[:display_limit],
        only_in_primary_count=len(only_left),
        only_in_secondary_count=len(only_right),
        compared_pairs=0,
        fields=fields,
        drift_counts={name: 0 for name in fields},
    )

    for k in matched[:compare_limit]:
        record_key, left_record = left[k]
        _, right_record = right[k]
        report.compared_pairs += 1
        for name in fields:
            left_value = normalize_field(name, left_record.get(name))
            right_value = normalize_field(name, right_record.get(name))
            if left_value == right_value:
                continue
            report.drift_counts[name] += 1
            report.total_drift += 1
            if len(report.drift) < max_entries:
                report.drift.append(
                    DriftEntry(
                        key=record_key,
                        field=name,
                        primary_value=_display(left_value),
                        secondary_value=_display(right_value),
                    )
                )

    return report


def compare_sample(
    workspace_id: str,
    sample_size: int,
    *,
    legacy_provider: Callable[[], LegacyStore],
    router: ReadRouter | None = None,
) -> DriftReport:
    """
    Pull the newest sample_size records from each store and report drift.

    Read-only and bounded: the sheet is rate limited, so this never scans
    beyond one values read.
    """
    workspace = workspaces.get_workspace(workspace_id)
    sample_size = max(1, min(int(sample_size), MAX_SAMPLE_SIZE))
    primary = (router or ReadRouter()).primary_for(workspace)

    db_page = work_orders.list_work_orders(workspace_id, limit=sample_size)
    db_sample = [sample_from_db(row.work_order) for row in db_page.items]

    legacy_records = legacy_provider().list_records()
    legacy_sample = [sample_from_legacy(r) for r in reversed(legacy_records[-sample_size:])]

    samples = {ReadSource.DB: db_sample, ReadSource.LEGACY: legacy_sample}
    report = compare_records(
        samples[primary],
        samples[primary.other],
        primary_source=primary.value,
        secondary_source=primary.other.value,
    )
    logger.info(
        "Reconciliation sample for workspace %s: in_both=%d only_primary=%d only_secondary=%d drift=%d",
        workspace_id,
        report.in_both,
        report.only_in_primary_count,
        report.only_in_secondary_count,
        report.total_drift,
    )
    return report
