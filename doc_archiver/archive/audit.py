import logging
import uuid
from datetime import datetime, UTC
from typing import List, Optional, Tuple

from .. import config
from ..database.kv import KeyValueStore
from ..models import AuditAction, AuditEntry

class AuditLog:
    """
    Append-only, bounded audit trail.

    Entries are kept in append order and persisted newest-first. Beyond `cap` the oldest
    entries are dropped; nothing else ever removes or edits an entry.
    """

    def __init__(self, kv: KeyValueStore, user: str = config.ACTING_USER, cap: int = config.AUDIT_LOG_CAP):
        self.kv = kv
        self.user = user
        self.cap = cap
        self._entries: List[AuditEntry] = []

    def load(self):
        stored = self.kv.get(config.AUDIT_KEY, [])
        entries = []
        for item in reversed(stored):
            try:
                entries.append(AuditEntry.from_dict(item))
            except (TypeError, AttributeError) as e:
                logging.warning(f"Dropping unreadable audit entry: {e}")
        self._entries = entries[-self.cap:]
        logging.debug(f"Loaded {len(self._entries)} audit entries")

    def append(self, action: AuditAction, details: str, resource_id: Optional[str] = None) -> AuditEntry:
        entry = AuditEntry(
            id=uuid.uuid4().hex,
            action=action,
            details=details,
            user=self.user,
            timestamp=datetime.now(UTC).isoformat(),
            resource_id=resource_id,
        )
        updated = (self._entries + [entry])[-self.cap:]
        # Durable first, then visible
        self.kv.set(config.AUDIT_KEY, [e.to_dict() for e in reversed(updated)])
        self._entries = updated
        logging.debug(f"Audit {action.value}: {details}")
        return entry

    def entries(self) -> Tuple[AuditEntry, ...]:
        """All entries, oldest first."""
        return tuple(self._entries)

    def recent(self, n: Optional[int] = None) -> List[AuditEntry]:
        """Newest first."""
        newest = list(reversed(self._entries))
        return newest if n is None else newest[:n]

    def __len__(self) -> int:
        return len(self._entries)
