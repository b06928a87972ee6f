from doc_archiver.scanning.reconciler import ChangeDetector

def _ids(changes):
    added = {e.path for e in changes.added}
    modified = {m.entry.path for m in changes.modified}
    return added, modified, set(changes.deleted_ids)

def test_new_file_is_added(make_entry, make_record):
    snapshot = {
        "docs/a.txt": make_entry("docs/a.txt", size=10, last_modified=100),
        "docs/b.txt": make_entry("docs/b.txt", size=20, last_modified=200),
    }
    records = [make_record("docs/a.txt", size=10, last_modified=100)]

    changes = ChangeDetector().diff(snapshot, records, "docs")

    assert [e.path for e in changes.added] == ["docs/b.txt"]
    assert changes.modified == []
    assert changes.deleted_ids == []

def test_missing_file_is_deleted(make_entry, make_record):
    a = make_record("docs/a.txt")
    c = make_record("docs/c.txt")
    snapshot = {"docs/a.txt": make_entry("docs/a.txt")}

    changes = ChangeDetector().diff(snapshot, [a, c], "docs")

    assert changes.added == []
    assert changes.modified == []
    assert changes.deleted_ids == [c.id]

def test_size_change_is_modified_and_keeps_id(make_entry, make_record):
    a = make_record("docs/a.txt", size=10)
    snapshot = {"docs/a.txt": make_entry("docs/a.txt", size=15)}

    changes = ChangeDetector().diff(snapshot, [a], "docs")

    assert len(changes.modified) == 1
    assert changes.modified[0].existing_id == a.id
    assert changes.modified[0].entry.size == 15

def test_mtime_change_is_modified(make_entry, make_record):
    a = make_record("docs/a.txt", last_modified=100)
    snapshot = {"docs/a.txt": make_entry("docs/a.txt", last_modified=101)}

    changes = ChangeDetector().diff(snapshot, [a], "docs")

    assert [m.existing_id for m in changes.modified] == [a.id]

def test_sets_are_disjoint(make_entry, make_record):
    records = [
        make_record("docs/same.txt"),
        make_record("docs/changed.txt", size=1),
        make_record("docs/gone.txt"),
    ]
    snapshot = {
        "docs/same.txt": make_entry("docs/same.txt"),
        "docs/changed.txt": make_entry("docs/changed.txt", size=2),
        "docs/new.txt": make_entry("docs/new.txt"),
    }

    changes = ChangeDetector().diff(snapshot, records, "docs")
    added, modified, deleted = _ids(changes)

    assert added == {"docs/new.txt"}
    assert modified == {"docs/changed.txt"}
    assert deleted == {records[2].id}
    assert not added & modified
    assert "docs/same.txt" not in added | modified

def test_no_changes_is_empty(make_entry, make_record):
    records = [make_record("docs/a.txt"), make_record("docs/sub/b.txt")]
    snapshot = {r.path: make_entry(r.path) for r in records}

    changes = ChangeDetector().diff(snapshot, records, "docs")

    assert changes.is_empty
    assert changes.counts() == {"added": 0, "modified": 0, "deleted": 0}

def test_records_outside_root_are_never_deleted(make_entry, make_record):
    inside = make_record("docs/a.txt")
    other_root = make_record("docs2/a.txt")
    upload = make_record("/local/scan.png")

    changes = ChangeDetector().diff({}, [inside, other_root, upload], "docs")

    assert changes.deleted_ids == [inside.id]

def test_flat_uploads_never_delete(make_entry, make_record):
    existing = make_record("/local/old.txt")
    snapshot = {"/local/new.txt": make_entry("/local/new.txt")}

    changes = ChangeDetector().diff(snapshot, [existing], root_name=None)

    assert [e.path for e in changes.added] == ["/local/new.txt"]
    assert changes.deleted_ids == []
