import logging
from typing import Dict, List, Optional

from ..archive.index import PathIndex
from ..models import ChangeSet, FileRecord, ModifiedFile, SnapshotEntry

class ChangeDetector:
    """
    Diffs a fresh snapshot against the archived records.

    Identity is by path only. A renamed file shows up as one deletion plus
    one addition and loses its classification history.
    """

    def diff(self,
             snapshot: Dict[str, SnapshotEntry],
             records: List[FileRecord],
             root_name: Optional[str] = None) -> ChangeSet:
        """
        Args:
            snapshot: path -> entry, from DirectorySnapshotter.
            records: the archive's current record list.
            root_name: name of the connected root. Only records under this
                       root can be reported as deleted; with no root (flat
                       uploads) nothing is deleted.
        """
        by_id = {rec.id: rec for rec in records}
        index = PathIndex.from_records(records)
        changes = ChangeSet()

        # 1. Added / Modified
        for path, entry in snapshot.items():
            existing_id = index.get(path)
            if existing_id is None:
                changes.added.append(entry)
                continue

            existing = by_id[existing_id]
            if existing.size != entry.size or existing.last_modified != entry.last_modified:
                changes.modified.append(ModifiedFile(entry=entry, existing_id=existing_id))

        # 2. Deleted (only within the connected root)
        if root_name:
            for path in index:
                if path in snapshot or not self._under_root(path, root_name):
                    continue
                changes.deleted_ids.append(index.get(path))

        logging.info(
            f"Reconciled {len(snapshot)} files against {len(records)} records: "
            f"{len(changes.added)} added, {len(changes.modified)} modified, "
            f"{len(changes.deleted_ids)} deleted"
        )
        return changes

    def _under_root(self, path: str, root_name: str) -> bool:
        return path == root_name or path.startswith(root_name.rstrip('/') + '/')
