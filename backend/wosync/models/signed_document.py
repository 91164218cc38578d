from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Decision(str, Enum):
    MATCHED = "MATCHED"
    UNMATCHED = "UNMATCHED"
    NEEDS_REVIEW = "NEEDS_REVIEW"


@dataclass
class SignedDocument:
    """A signed PDF received for a workspace, optionally matched to a work order."""

    id: str
    workspace_id: str
    file_hash: str | None
    signed_pdf_url: str | None
    signed_preview_image_url: str | None
    fm_key: str | None
    extraction_method: str | None
    extraction_confidence: str | None
    extraction_rationale: str | None
    extracted_work_order_number: str | None
    matched_work_order_id: str | None
    created_at: datetime
    updated_at: datetime
    # Joined from work_orders at read time
    matched_work_order_number: str | None = None

    @property
    def decision(self) -> Decision:
        return Decision.MATCHED if self.matched_work_order_id else Decision.UNMATCHED


@dataclass
class UnifiedSignedDoc:
    id: str
    extracted_work_order_number: str | None
    extraction_method: str | None
    extraction_confidence: str | None
    extraction_rationale: str | None
    signed_pdf_url: str | None
    signed_preview_image_url: str | None
    fm_key: str | None
    matched_work_order_id: str | None
    matched_work_order_number: str | None
    decision: Decision
    created_at: str | None
