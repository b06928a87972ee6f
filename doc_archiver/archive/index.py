from typing import Dict, Iterable, Iterator, List, Optional

from ..models import FileRecord


def parent_of(path: str) -> str:
    return path.rsplit('/', 1)[0] if '/' in path else ''


class PathIndex:
    """
    original_path -> record id, plus parent directory -> {path: id}.

    The path is the natural key for reconciliation; the id is only the
    handle carried forward once a path has been archived.
    """

    def __init__(self):
        self._by_path: Dict[str, str] = {}
        self._by_parent: Dict[str, Dict[str, str]] = {}

    @classmethod
    def from_records(cls, records: Iterable[FileRecord]) -> 'PathIndex':
        index = cls()
        for rec in records:
            index.add(rec)
        return index

    def add(self, record: FileRecord):
        path = record.path
        if not path:
            return
        self._by_path[path] = record.id
        self._by_parent.setdefault(parent_of(path), {})[path] = record.id

    def discard(self, record: FileRecord):
        path = record.path
        if not path or self._by_path.get(path) != record.id:
            return
        del self._by_path[path]
        parent = parent_of(path)
        children = self._by_parent[parent]
        del children[path]
        if not children:
            del self._by_parent[parent]

    def get(self, path: str) -> Optional[str]:
        return self._by_path.get(path)

    def siblings(self, path: str) -> List[str]:
        """Ids of every indexed record in the same directory as `path`."""
        return list(self._by_parent.get(parent_of(path), {}).values())

    def clear(self):
        self._by_path.clear()
        self._by_parent.clear()

    def __contains__(self, path: str) -> bool:
        return path in self._by_path

    def __len__(self) -> int:
        return len(self._by_path)

    def __iter__(self) -> Iterator[str]:
        return iter(self._by_path)
