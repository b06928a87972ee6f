import logging
import random
import uuid
from dataclasses import replace
from datetime import datetime, UTC
from typing import Dict, Iterable, List, Optional, Set

from .. import config
from ..classification.gateway import build_archive_summary
from ..database.kv import KeyValueStore
from ..exceptions import ArchiverError
from ..models import (
    ArchiveStatus, AuditAction, Confidentiality, DocumentType, FileRecord,
    Importance, RetentionPolicy,
)
from .audit import AuditLog
from .index import PathIndex
from .policies import DEFAULT_POLICIES, apply_retention

class ArchiveStore:
    """
    The authoritative record set plus its durable mirror.

    Every mutation is written through to the key/value store before the
    in-memory state changes, so a failed write (PersistenceError) leaves the
    store as it was. Records are kept newest-first.
    """

    def __init__(self, kv: KeyValueStore, audit: Optional[AuditLog] = None):
        self.kv = kv
        self.audit = audit
        self._records: List[FileRecord] = []
        self._by_id: Dict[str, FileRecord] = {}
        self._index = PathIndex()
        self._policies: List[RetentionPolicy] = list(DEFAULT_POLICIES)
        self._connected_root: Optional[str] = None
        self._last_sync: Optional[str] = None

    # --- Startup ---

    def load(self):
        """Reads every namespace once. Unreadable records are skipped, not fatal."""
        records = []
        for item in self.kv.get(config.RECORDS_KEY, []):
            try:
                records.append(FileRecord.from_dict(item))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logging.warning(f"Skipping unreadable stored record: {e}")
        self._set_records(records)

        stored_policies = self.kv.get(config.POLICIES_KEY)
        if stored_policies is not None:
            self._policies = [RetentionPolicy.from_dict(p) for p in stored_policies]

        self._connected_root = self.kv.get(config.FOLDER_KEY)
        self._last_sync = self.kv.get(config.LAST_SYNC_KEY)
        logging.info(f"Loaded archive: {len(self._records)} records, {len(self._policies)} policies")

    # --- Reads ---

    @property
    def records(self) -> List[FileRecord]:
        return list(self._records)

    def get(self, record_id: str) -> Optional[FileRecord]:
        return self._by_id.get(record_id)

    def find_by_path(self, path: str) -> Optional[FileRecord]:
        record_id = self._index.get(path)
        return self._by_id.get(record_id) if record_id else None

    def find_by_record_id(self, iso_record_id: str) -> Optional[FileRecord]:
        for rec in self._records:
            if rec.iso_metadata and rec.iso_metadata.record_id == iso_record_id:
                return rec
        return None

    def __len__(self) -> int:
        return len(self._records)

    def sibling_ids(self, path: str, exclude_id: Optional[str] = None) -> List[str]:
        """Ids of archived records in the same directory as `path`."""
        return [i for i in self._index.siblings(path) if i != exclude_id]

    def existing_record_ids(self) -> Set[str]:
        return {r.iso_metadata.record_id for r in self._records if r.iso_metadata}

    def summary(self, limit: int = config.ARCHIVE_SUMMARY_LIMIT) -> List[Dict[str, str]]:
        """Compact view of the newest records for the classifier prompt."""
        return build_archive_summary(self._records, limit)

    def search(self,
               query: str = "",
               document_type: Optional[DocumentType] = None,
               importance: Optional[Importance] = None,
               confidentiality: Optional[Confidentiality] = None,
               status: Optional[ArchiveStatus] = None) -> List[FileRecord]:
        """Case-insensitive match on name, title and entity, plus exact-value filters."""
        q = query.strip().lower()
        results = []
        for rec in self._records:
            meta = rec.iso_metadata
            if q:
                haystack = [rec.name]
                if meta:
                    haystack += [meta.title, meta.entity]
                if not any(q in (h or "").lower() for h in haystack):
                    continue
            if document_type and (not meta or meta.document_type != document_type):
                continue
            if importance and (not meta or meta.importance != importance):
                continue
            if confidentiality and (not meta or meta.confidentiality != confidentiality):
                continue
            if status and (not meta or meta.status != status):
                continue
            results.append(rec)
        return results

    def compliance_alerts(self, now: Optional[datetime] = None) -> List[FileRecord]:
        """Records past their expiry date that are still marked active."""
        today = (now or datetime.now(UTC)).date()
        alerts = []
        for rec in self._records:
            meta = rec.iso_metadata
            if not meta or not meta.expiry_date or meta.status != ArchiveStatus.ACTIVE:
                continue
            try:
                expiry = datetime.fromisoformat(meta.expiry_date).date()
            except ValueError:
                logging.debug(f"Ignoring malformed expiry date on {rec.id}: {meta.expiry_date}")
                continue
            if expiry < today:
                alerts.append(rec)
        return alerts

    # --- Writes ---

    def upsert(self, record: FileRecord):
        """Replaces the record with the same id in place, or inserts it first."""
        if record.id in self._by_id:
            updated = [record if r.id == record.id else r for r in self._records]
        else:
            updated = [record] + self._records
        self._persist_records(updated)

        old = self._by_id.get(record.id)
        if old is not None:
            self._index.discard(old)
        self._records = updated
        self._by_id[record.id] = record
        self._index.add(record)

    def remove(self, ids: Iterable[str]) -> List[FileRecord]:
        doomed = set(ids)
        removed = [r for r in self._records if r.id in doomed]
        if not removed:
            return []
        kept = [r for r in self._records if r.id not in doomed]
        self._persist_records(kept)
        self._set_records(kept)
        return removed

    def clear(self):
        """Forgets every record and the connected root. Policies survive."""
        count = len(self._records)
        self.kv.delete(config.RECORDS_KEY)
        self.kv.delete(config.FOLDER_KEY)
        self.kv.delete(config.LAST_SYNC_KEY)
        self._set_records([])
        self._connected_root = None
        self._last_sync = None
        if self.audit:
            self.audit.append(AuditAction.CLEAR, f"Archive cleared ({count} records)")

    # --- Identifiers ---

    def new_file_id(self) -> str:
        while True:
            candidate = uuid.uuid4().hex[:12]
            if candidate not in self._by_id:
                return candidate

    def new_record_id(self, year: Optional[int] = None) -> str:
        """REC-<year>-<4 digits>, unique within the store."""
        year = year or datetime.now(UTC).year
        taken = self.existing_record_ids()
        free = [n for n in range(1000, 10000)
                if config.RECORD_ID_PATTERN.format(year=year, number=n) not in taken]
        if not free:
            raise ArchiverError(f"No record ids left for {year}")
        return config.RECORD_ID_PATTERN.format(year=year, number=random.choice(free))

    # --- Connected root / sync bookkeeping ---

    @property
    def connected_root(self) -> Optional[str]:
        return self._connected_root

    def set_connected_root(self, name: Optional[str]):
        if name == self._connected_root:
            return
        if name is None:
            self.kv.delete(config.FOLDER_KEY)
        else:
            self.kv.set(config.FOLDER_KEY, name)
        self._connected_root = name

    @property
    def last_sync(self) -> Optional[str]:
        return self._last_sync

    def mark_synced(self, when: Optional[datetime] = None):
        stamp = (when or datetime.now(UTC)).isoformat()
        self.kv.set(config.LAST_SYNC_KEY, stamp)
        self._last_sync = stamp

    # --- Retention policies ---

    @property
    def policies(self) -> List[RetentionPolicy]:
        return list(self._policies)

    def get_policy(self, policy_id: str) -> Optional[RetentionPolicy]:
        return next((p for p in self._policies if p.id == policy_id), None)

    def add_policy(self, policy: RetentionPolicy):
        updated = [p for p in self._policies if p.id != policy.id] + [policy]
        self.kv.set(config.POLICIES_KEY, [p.to_dict() for p in updated])
        self._policies = updated
        if self.audit:
            self.audit.append(AuditAction.POLICY, f"Policy saved: {policy.name}", policy.id)

    def remove_policy(self, policy_id: str) -> bool:
        updated = [p for p in self._policies if p.id != policy_id]
        if len(updated) == len(self._policies):
            return False
        self.kv.set(config.POLICIES_KEY, [p.to_dict() for p in updated])
        self._policies = updated
        if self.audit:
            self.audit.append(AuditAction.POLICY, f"Policy removed: {policy_id}", policy_id)
        return True

    def apply_policy(self, record_id: str, policy_id: str) -> FileRecord:
        """Manually associates a policy with a record and recomputes its expiry date."""
        record = self.get(record_id)
        if record is None or record.iso_metadata is None:
            raise KeyError(f"No classified record with id {record_id}")
        policy = self.get_policy(policy_id)
        if policy is None:
            raise KeyError(f"No policy with id {policy_id}")

        meta = replace(record.iso_metadata)
        apply_retention(meta, policy)
        meta.retention_assigned = True
        updated = replace(record, iso_metadata=meta)
        self.upsert(updated)
        if self.audit:
            self.audit.append(
                AuditAction.POLICY,
                f"Policy '{policy.name}' applied to {meta.record_id}, expires {meta.expiry_date}",
                record_id,
            )
        return updated

    # --- Internals ---

    def _persist_records(self, records: List[FileRecord]):
        self.kv.set(config.RECORDS_KEY, [r.to_dict() for r in records])

    def _set_records(self, records: List[FileRecord]):
        self._records = records
        self._by_id = {r.id: r for r in records}
        self._index = PathIndex.from_records(records)
