import logging
import threading
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, UTC
from enum import Enum
from pathlib import Path
from typing import Callable, Deque, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from tqdm import tqdm

from . import config
from .archive.audit import AuditLog
from .archive.policies import apply_retention, match_policy
from .archive.store import ArchiveStore
from .classification.gateway import ClassificationGateway, ClassificationResult, TextModel
from .classification.gemini import GeminiClient
from .database.db import DBManager
from .database.kv import KeyValueStore
from .exceptions import SyncInProgressError
from .metadata.extract import ContentExtractor, ExtractedContent
from .models import AuditAction, ChangeSet, FileRecord, ISOMetadata, SnapshotEntry
from .scanning.filesystem import DirectorySnapshotter
from .scanning.hasher import FileHasher
from .scanning.reconciler import ChangeDetector


class SyncStatus(str, Enum):
    IDLE = 'idle'
    SCANNING = 'scanning'
    RECONCILING = 'reconciling'
    ANALYZING = 'analyzing'
    COMPLETED = 'completed'
    ERROR = 'error'


@dataclass
class SyncProgress:
    status: SyncStatus = SyncStatus.IDLE
    current: int = 0
    total: int = 0
    current_file: str = ""
    summary: Dict[str, int] = field(default_factory=dict)


@dataclass
class QueueItem:
    entry: SnapshotEntry
    existing_id: Optional[str] = None

    @property
    def is_new(self) -> bool:
        return self.existing_id is None


class ProcessingQueue:
    """
    The per-batch work list: added files first, then modified files, each
    in the order the ChangeDetector reported them. Iterating pops items one
    at a time; the caller reports each outcome with mark_done/mark_skipped.
    """

    def __init__(self, items: Iterable[QueueItem]):
        self._pending: Deque[QueueItem] = deque(items)
        self.total = len(self._pending)
        self.processed: List[Tuple[QueueItem, FileRecord]] = []
        self.skipped: List[Tuple[QueueItem, str]] = []

    @classmethod
    def from_changes(cls, changes: ChangeSet) -> 'ProcessingQueue':
        items = [QueueItem(entry) for entry in changes.added]
        items += [QueueItem(m.entry, m.existing_id) for m in changes.modified]
        return cls(items)

    @property
    def pending(self) -> List[QueueItem]:
        return list(self._pending)

    def __len__(self) -> int:
        return len(self._pending)

    def __iter__(self) -> Iterator[QueueItem]:
        while self._pending:
            yield self._pending.popleft()

    def mark_done(self, item: QueueItem, record: FileRecord):
        self.processed.append((item, record))

    def mark_skipped(self, item: QueueItem, reason: str):
        self.skipped.append((item, reason))


@dataclass
class SyncReport:
    changes: ChangeSet
    processed: List[FileRecord] = field(default_factory=list)
    skipped: List[Tuple[str, str]] = field(default_factory=list)  # (path, reason)

    @property
    def added(self) -> int:
        return len(self.changes.added)

    @property
    def modified(self) -> int:
        return len(self.changes.modified)

    @property
    def deleted(self) -> int:
        return len(self.changes.deleted_ids)


class ArchivePipeline:
    """
    Drives one reconciliation batch from a snapshot to committed records.

    1. Scan (snapshot the root or the uploaded files)
    2. Reconcile (diff against the store)
    3. Remove deleted records (one aggregate DELETE entry)
    4. Analyze queue serially: extract -> classify -> merge -> audit
    5. Summarize (SYNC entry, last-sync stamp), completed -> idle

    A file that fails anywhere in step 4 is logged and skipped; the batch
    always runs to the end. Only one batch may run at a time.
    """

    def __init__(self,
                 store: ArchiveStore,
                 audit: AuditLog,
                 gateway: ClassificationGateway,
                 extractor: Optional[ContentExtractor] = None,
                 snapshotter: Optional[DirectorySnapshotter] = None,
                 detector: Optional[ChangeDetector] = None,
                 on_progress: Optional[Callable[[SyncProgress], None]] = None,
                 reset_delay: float = config.SYNC_RESET_DELAY,
                 show_progress: bool = False):
        self.store = store
        self.audit = audit
        self.gateway = gateway
        self.extractor = extractor or ContentExtractor()
        self.snapshotter = snapshotter or DirectorySnapshotter()
        self.detector = detector or ChangeDetector()
        self.hasher = FileHasher()
        self.on_progress = on_progress
        self.reset_delay = reset_delay
        self.show_progress = show_progress

        self.progress = SyncProgress()
        self._running = False
        self._batch_no = 0
        self._lock = threading.Lock()

    # --- Entry points ---

    def sync_directory(self, root: Union[Path, str]) -> SyncReport:
        """Full reconciliation of a connected root directory."""
        root = Path(root)
        self._begin()
        try:
            self._publish(SyncStatus.SCANNING, current_file=str(root))
            try:
                snapshot = self.snapshotter.snapshot(root)
                root_name = self.snapshotter.root_name(root)
                self.store.set_connected_root(root_name)
            except Exception:
                self._fail()
                raise
            return self._run_batch(snapshot, root_name)
        finally:
            self._end()

    def sync_uploads(self, paths: Iterable[Union[Path, str]]) -> SyncReport:
        """One-shot flat selection. Adds and updates only; never deletes."""
        self._begin()
        try:
            self._publish(SyncStatus.SCANNING, current_file="uploaded files")
            try:
                snapshot = self.snapshotter.snapshot_uploads(Path(p) for p in paths)
            except Exception:
                self._fail()
                raise
            return self._run_batch(snapshot, root_name=None)
        finally:
            self._end()

    def sync_snapshot(self, snapshot: Dict[str, SnapshotEntry], root_name: Optional[str]) -> SyncReport:
        """Runs a batch over a snapshot produced elsewhere."""
        self._begin()
        try:
            return self._run_batch(snapshot, root_name)
        finally:
            self._end()

    # --- Batch ---

    def _run_batch(self, snapshot: Dict[str, SnapshotEntry], root_name: Optional[str]) -> SyncReport:
        # Per-file errors never reach here; anything that does ends the batch
        try:
            return self._reconcile(snapshot, root_name)
        except Exception:
            self._fail()
            raise

    def _reconcile(self, snapshot: Dict[str, SnapshotEntry], root_name: Optional[str]) -> SyncReport:
        self._publish(SyncStatus.RECONCILING, total=len(snapshot), current=0,
                      current_file="Checking for changes...")
        changes = self.detector.diff(snapshot, self.store.records, root_name)

        if changes.is_empty:
            logging.info("Archive matches the source. No changes detected.")
            self.store.mark_synced()
            self._complete("No changes")
            return SyncReport(changes=changes)

        queue = ProcessingQueue.from_changes(changes)
        self._publish(SyncStatus.ANALYZING, total=queue.total, current=0, summary=changes.counts())

        if changes.deleted_ids:
            self._remove_deleted(changes.deleted_ids, root_name)

        for position, item in enumerate(
                tqdm(queue, total=queue.total, desc="Archiving", disable=not self.show_progress), start=1):
            self._publish(SyncStatus.ANALYZING, current=position, current_file=item.entry.name)
            try:
                record = self._process_item(item)
            except Exception as e:
                logging.error(f"Sync error on {item.entry.path}: {e}")
                queue.mark_skipped(item, str(e))
                continue
            queue.mark_done(item, record)

        counts = changes.counts()
        details = (f"Sync complete: {counts['added']} added, {counts['modified']} updated, "
                   f"{counts['deleted']} removed")
        if queue.skipped:
            details += f", {len(queue.skipped)} skipped"
        self.audit.append(AuditAction.SYNC, details)
        self.store.mark_synced()
        logging.info(details)

        self._complete("Incremental sync complete")
        return SyncReport(
            changes=changes,
            processed=[rec for _, rec in queue.processed],
            skipped=[(item.entry.path, reason) for item, reason in queue.skipped],
        )

    def _remove_deleted(self, deleted_ids: List[str], root_name: Optional[str]):
        removed = self.store.remove(deleted_ids)
        if not removed:
            return
        names = ", ".join(r.name for r in removed[:20])
        if len(removed) > 20:
            names += f" (+{len(removed) - 20} more)"
        self.audit.append(
            AuditAction.DELETE,
            f"Removed {len(removed)} records no longer present in '{root_name}': {names}",
        )

    def _process_item(self, item: QueueItem) -> FileRecord:
        entry = item.entry
        existing = self.store.get(item.existing_id) if item.existing_id else None
        file_id = existing.id if existing else self.store.new_file_id()

        content = self.extractor.extract(entry)
        checksum = self._checksum(entry)

        siblings = self.store.sibling_ids(entry.path, exclude_id=file_id)
        summary = self.store.summary()
        result = self.gateway.classify(entry.name, content.text, summary, siblings, mime_type=entry.mime_type)

        record = self._build_record(entry, file_id, existing, content, checksum, result)
        self.store.upsert(record)

        meta = record.iso_metadata
        if existing is None:
            self.audit.append(AuditAction.CREATE, f"Archived new document: {meta.title} ({meta.record_id})", record.id)
        else:
            self.audit.append(AuditAction.UPDATE, f"Updated modified document: {meta.title} ({meta.record_id})", record.id)
        return record

    def _build_record(self,
                      entry: SnapshotEntry,
                      file_id: str,
                      existing: Optional[FileRecord],
                      content: ExtractedContent,
                      checksum: Optional[str],
                      result: ClassificationResult) -> FileRecord:
        now_iso = datetime.now(UTC).isoformat()
        prev = existing.iso_metadata if existing else None

        if prev is not None and result.degraded:
            # Keep the last good classification, flagged for review
            meta = replace(prev, original_path=entry.path, updated_at=now_iso, degraded=True,
                           related_file_ids=list(prev.related_file_ids))
        else:
            meta = ISOMetadata(
                record_id=prev.record_id if prev else self.store.new_record_id(),
                original_path=entry.path,
                title=result.title,
                created_at=prev.created_at if prev else now_iso,
                updated_at=now_iso,
            )
            result.apply_to(meta)

        meta.ocr_status = content.ocr_status

        # A hand-assigned policy outlives reclassification; otherwise the
        # document type decides and an unmatched type keeps what it had
        if prev is not None and prev.retention_assigned:
            policy = None
        else:
            policy = match_policy(self.store.policies, meta.document_type)
        if policy is not None:
            apply_retention(meta, policy)
        elif prev is not None:
            meta.retention_policy = prev.retention_policy
            meta.expiry_date = prev.expiry_date
            meta.retention_assigned = prev.retention_assigned

        return FileRecord(
            id=file_id,
            name=entry.name,
            size=entry.size,
            last_modified=entry.last_modified,
            mime_type=entry.mime_type,
            extracted_text=content.text,
            preview=content.preview,
            checksum=checksum,
            iso_metadata=meta,
        )

    def _checksum(self, entry: SnapshotEntry) -> Optional[str]:
        try:
            return self.hasher.compute_hash(entry.location)
        except OSError as e:
            logging.warning(f"Checksum failed for {entry.path}: {e}")
            return None

    # --- State machine ---

    def _begin(self):
        with self._lock:
            if self._running:
                raise SyncInProgressError("A sync is already running")
            self._running = True
            self._batch_no += 1

    def _end(self):
        with self._lock:
            self._running = False

    def _fail(self):
        logging.error("Sync aborted; archive keeps every change committed so far")
        self._publish(SyncStatus.ERROR)
        self._publish(SyncStatus.IDLE)

    def _complete(self, message: str):
        self._publish(SyncStatus.COMPLETED, current_file=message)
        if self.reset_delay <= 0:
            self._publish(SyncStatus.IDLE)
            return
        batch_no = self._batch_no
        timer = threading.Timer(self.reset_delay, self._reset_idle, args=(batch_no,))
        timer.daemon = True
        timer.start()

    def _reset_idle(self, batch_no: int):
        # A newer batch owns the progress state now
        if batch_no == self._batch_no and self.progress.status == SyncStatus.COMPLETED:
            self._publish(SyncStatus.IDLE)

    def _publish(self, status: SyncStatus, **changes):
        self.progress = replace(self.progress, status=status, **changes)
        if self.on_progress:
            self.on_progress(self.progress)


class ArchiveApp:
    """
    Owns the database connection and everything built on it for the
    lifetime of one process.

        with ArchiveApp(db_path) as app:
            app.pipeline.sync_directory(folder)
    """

    def __init__(self,
                 db_path: Union[Path, str],
                 client: Optional[TextModel] = None,
                 on_progress: Optional[Callable[[SyncProgress], None]] = None,
                 reset_delay: float = config.SYNC_RESET_DELAY,
                 show_progress: bool = False):
        self.db_manager = DBManager(db_path)
        self.client = client
        self.on_progress = on_progress
        self.reset_delay = reset_delay
        self.show_progress = show_progress

    def __enter__(self) -> 'ArchiveApp':
        conn = self.db_manager.connect()
        kv = KeyValueStore(conn)

        self.audit = AuditLog(kv)
        self.audit.load()
        self.store = ArchiveStore(kv, self.audit)
        self.store.load()

        self.gateway = ClassificationGateway(self.client or GeminiClient())
        self.pipeline = ArchivePipeline(
            store=self.store,
            audit=self.audit,
            gateway=self.gateway,
            on_progress=self.on_progress,
            reset_delay=self.reset_delay,
            show_progress=self.show_progress,
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.db_manager.close()
