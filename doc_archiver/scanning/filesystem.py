import os
import logging
import mimetypes
from pathlib import Path
from typing import Dict, Iterable, Iterator, Tuple

from .. import config
from ..exceptions import UnsupportedCapabilityError
from ..models import SnapshotEntry

class DirectorySnapshotter:
    """
    Turns a connected root (or a one-off selection of files) into a
    path -> SnapshotEntry map that the ChangeDetector can diff.

    Paths always use '/' and start with the root directory's own name,
    so two roots connected at different times never collide.
    """

    def snapshot(self, root: Path) -> Dict[str, SnapshotEntry]:
        root = Path(root)
        if not root.is_dir() or not os.access(root, os.R_OK | os.X_OK):
            raise UnsupportedCapabilityError(
                f"{root} cannot be connected as a directory; select individual files instead."
            )

        root_name = self.root_name(root)
        entries: Dict[str, SnapshotEntry] = {}
        for path, rel_parts in self._iter_files(root):
            key = "/".join((root_name, *rel_parts))
            entry = self._make_entry(path, key)
            if entry:
                entries[key] = entry

        logging.info(f"Snapshot of '{root_name}': {len(entries)} files")
        return entries

    def root_name(self, root: Path) -> str:
        """First path segment of every entry under this root."""
        resolved = Path(root).resolve()
        return resolved.name or resolved.anchor.strip("/\\") or "root"

    def snapshot_uploads(self, paths: Iterable[Path]) -> Dict[str, SnapshotEntry]:
        """
        Flat selection with no hierarchy. Each file is keyed /local/<name>;
        a later file with the same name replaces an earlier one.
        """
        entries: Dict[str, SnapshotEntry] = {}
        for p in paths:
            p = Path(p)
            if not p.is_file():
                logging.warning(f"Skipping {p}: not a regular file")
                continue
            if self._is_ignored(p.name):
                continue
            key = f"{config.LOCAL_UPLOAD_PREFIX}{p.name}"
            entry = self._make_entry(p, key)
            if entry:
                entries[key] = entry
        return entries

    def _make_entry(self, path: Path, key: str):
        try:
            st = path.stat()
        except OSError as e:
            logging.error(f"Failed to stat {path}: {e}")
            return None

        mime, _ = mimetypes.guess_type(path.name)
        return SnapshotEntry(
            path=key,
            name=path.name,
            size=st.st_size,
            last_modified=st.st_mtime_ns // 1_000_000,
            location=path,
            mime_type=mime or "",
        )

    def _iter_files(self, root: Path) -> Iterator[Tuple[Path, Tuple[str, ...]]]:
        """Depth-first walker using os.scandir. Yields (path, parts relative to root)."""
        stack = [(root, ())]
        while stack:
            current, rel = stack.pop()

            try:
                with os.scandir(current) as it:
                    entries = list(it)
            except (OSError, PermissionError):
                logging.warning(f"Permission denied: {current}")
                continue

            # Sort for stable traversal order
            entries.sort(key=lambda e: e.name.lower())

            dirs = []
            files = []
            for e in entries:
                if self._is_ignored(e.name):
                    continue
                if e.is_dir(follow_symlinks=False):
                    dirs.append((Path(e.path), rel + (e.name,)))
                elif e.is_file(follow_symlinks=False):
                    files.append((Path(e.path), rel + (e.name,)))

            # Push dirs to stack (reversed so we process A before Z)
            for d in reversed(dirs):
                stack.append(d)

            for f in files:
                yield f

    def _is_ignored(self, name: str) -> bool:
        return name.startswith("._") or name.lower() in config.IGNORED_NAMES
