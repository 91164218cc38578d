from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class WorkOrder:
    """Canonical work order as stored in the relational store."""

    id: str
    workspace_id: str
    work_order_number: str | None
    fm_key: str | None
    status: str
    scheduled_date: str | None
    customer_name: str | None
    service_address: str | None
    job_description: str | None
    amount: str | None
    currency: str | None
    priority: str | None
    notes: str | None
    signed_pdf_url: str | None
    signed_preview_image_url: str | None
    signed_at: datetime | None
    created_at: datetime
    updated_at: datetime

    @property
    def natural_key(self) -> str:
        return natural_key(self.work_order_number, self.fm_key)


@dataclass
class UnifiedWorkOrder:
    """Work order shape returned by reads regardless of which store answered."""

    id: str
    work_order_number: str | None
    fm_key: str | None
    customer_name: str | None
    service_address: str | None
    scheduled_date: str | None
    amount: str | None
    currency: str | None
    status: str
    signed_at: str | None
    signed_pdf_url: str | None
    export_status: str | None = None


def natural_key(work_order_number: str | None, fm_key: str | None) -> str:
    """Key shared by both stores: surrogate ids differ across them."""
    return f"{(work_order_number or '').strip().lower()}:{(fm_key or '').strip().lower()}"
