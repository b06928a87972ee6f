import csv
import logging
from datetime import datetime, UTC
from pathlib import Path
from typing import List, Optional, Union

from .archive.store import ArchiveStore
from .models import FileRecord

class ReportGenerator:
    HEADERS = [
        "Record ID",
        "Title",
        "Original Path",
        "Document Type",
        "Entity",
        "Importance",
        "Confidentiality",
        "Status",
        "Retention Policy",
        "Expiry Date",
        "OCR",
        "Updated At",
        "Notes",
    ]

    def __init__(self, store: ArchiveStore):
        self.store = store

    def export_csv(self, output_csv: Union[Path, str], now: Optional[datetime] = None) -> int:
        """
        Writes one row per archived record. Returns the number of rows written.
        """
        alert_ids = {r.id for r in self.store.compliance_alerts(now or datetime.now(UTC))}
        records = self.store.records
        logging.info(f"Exporting {len(records)} records -> {output_csv}")

        # utf-8-sig so spreadsheet apps pick up Arabic labels correctly
        with open(output_csv, "w", newline="", encoding="utf-8-sig") as f:
            writer = csv.writer(f)
            writer.writerow(self.HEADERS)
            for rec in records:
                writer.writerow(self._row(rec, rec.id in alert_ids))

        logging.info(f"Export complete. Wrote {len(records)} rows.")
        return len(records)

    def _row(self, rec: FileRecord, is_alert: bool) -> List[str]:
        meta = rec.iso_metadata
        if meta is None:
            return ["", rec.name, "", "", "", "", "", "", "", "", "", "", "Not classified"]

        notes = []
        if is_alert:
            notes.append("Retention expired")
        if meta.degraded:
            notes.append("Needs review")

        return [
            meta.record_id,
            meta.title,
            meta.original_path,
            meta.document_type.value if meta.document_type else "",
            meta.entity,
            meta.importance.value if meta.importance else "",
            meta.confidentiality.value if meta.confidentiality else "",
            meta.status.value,
            meta.retention_policy or "",
            meta.expiry_date or "",
            meta.ocr_status.value,
            meta.updated_at,
            "; ".join(notes),
        ]
