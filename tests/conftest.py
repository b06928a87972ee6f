import json
import os
import re
import sqlite3
from pathlib import Path

import pytest

from doc_archiver.archive.audit import AuditLog
from doc_archiver.archive.store import ArchiveStore
from doc_archiver.classification.gateway import ClassificationGateway
from doc_archiver.core import ArchivePipeline
from doc_archiver.database.kv import KeyValueStore
from doc_archiver.database.schema import init_schema
from doc_archiver.models import FileRecord, ISOMetadata, SnapshotEntry


class FakeClient:
    """
    Stands in for GeminiClient. Queued responses are returned first (an
    Exception instance is raised instead); after that every classification
    prompt gets a valid contract answer titled after the file name.
    """

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.prompts = []

    def generate(self, prompt, json_mode=False):
        self.prompts.append(prompt)
        if self.responses:
            response = self.responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response
        match = re.search(r"File name: (.+)", prompt)
        name = match.group(1).strip() if match else "document"
        return json.dumps({
            "title": f"Title of {name}",
            "description": "Summary",
            "documentType": "عقد",
            "entity": "Acme",
            "importance": "مهم",
            "confidentiality": "داخلي",
            "year": 2023,
        })


@pytest.fixture
def conn():
    """Returns an in-memory SQLite connection with the schema initialized."""
    c = sqlite3.connect(":memory:")
    init_schema(c)
    try:
        yield c
    finally:
        c.close()

@pytest.fixture
def kv(conn):
    return KeyValueStore(conn)

@pytest.fixture
def audit(kv):
    log = AuditLog(kv, user="tester")
    log.load()
    return log

@pytest.fixture
def store(kv, audit):
    s = ArchiveStore(kv, audit)
    s.load()
    return s

@pytest.fixture
def fake_client():
    return FakeClient()

@pytest.fixture
def gateway(fake_client):
    return ClassificationGateway(fake_client)

@pytest.fixture
def pipeline(store, audit, gateway):
    return ArchivePipeline(store, audit, gateway, reset_delay=0)

@pytest.fixture
def make_entry(tmp_path):
    """Factory for SnapshotEntry objects that need no file on disk."""
    def _make(path, size=10, last_modified=100, mime_type="text/plain"):
        name = path.rsplit('/', 1)[-1]
        return SnapshotEntry(
            path=path,
            name=name,
            size=size,
            last_modified=last_modified,
            location=tmp_path / name,
            mime_type=mime_type,
        )
    return _make

@pytest.fixture
def make_record():
    """Factory for classified FileRecords at a given archive path."""
    counter = iter(range(1000, 10000))

    def _make(path, size=10, last_modified=100, record_id=None, **meta_fields):
        n = next(counter)
        meta = ISOMetadata(
            record_id=record_id or f"REC-2024-{n:04d}",
            original_path=path,
            title=path.rsplit('/', 1)[-1],
            created_at="2024-01-15T10:00:00+00:00",
            updated_at="2024-01-15T10:00:00+00:00",
            **meta_fields,
        )
        return FileRecord(
            id=f"file{n}",
            name=path.rsplit('/', 1)[-1],
            size=size,
            last_modified=last_modified,
            mime_type="text/plain",
            iso_metadata=meta,
        )
    return _make

@pytest.fixture
def write_file():
    """Writes text to a path (creating parents) and optionally pins its mtime (seconds)."""
    def _write(path: Path, content: str, mtime: int = None) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        if mtime is not None:
            os.utime(path, (mtime, mtime))
        return path
    return _write
