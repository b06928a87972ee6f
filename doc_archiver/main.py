import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from . import config
from .core import ArchiveApp, SyncReport
from .exceptions import ArchiverError
from .models import (
    ArchiveStatus, Confidentiality, DocumentType, FileRecord, Importance, coerce_enum,
)
from .reporting import ReportGenerator

def setup_logging(db_path: Path, verbose: bool):
    """Sets up logging to both console and a file next to the archive database."""
    log_level = logging.DEBUG if verbose else logging.INFO

    db_path.parent.mkdir(parents=True, exist_ok=True)
    log_file = db_path.parent / "archiver.log"

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[
            logging.FileHandler(log_file, encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ]
    )

    # Silence chatty libraries
    logging.getLogger("PIL").setLevel(logging.WARNING)
    logging.getLogger("google").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

def _enum_arg(enum_cls):
    def parse(value: str):
        member = coerce_enum(enum_cls, value)
        if member is None:
            choices = ", ".join(m.name.lower() for m in enum_cls)
            raise argparse.ArgumentTypeError(f"unknown value '{value}' (choose from {choices})")
        return member
    return parse

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="doc-archiver", description="Document Archiver: ISO 15489 style records archive")

    p.add_argument("--db", type=Path, default=Path(config.DEFAULT_DB_NAME), help=f"Path of the archive database (default: ./{config.DEFAULT_DB_NAME})")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    sub = p.add_subparsers(dest="command", required=True)

    s = sub.add_parser("sync", help="Connect a directory and reconcile the archive with it")
    s.add_argument("root", type=Path, help="Directory to connect")

    s = sub.add_parser("upload", help="Archive individual files (never removes records)")
    s.add_argument("files", nargs="+", type=Path, help="Files to archive")

    s = sub.add_parser("search", help="Search records by name, title or entity")
    s.add_argument("query", nargs="?", default="", help="Text to look for")
    s.add_argument("--type", dest="document_type", type=_enum_arg(DocumentType), help="Document type filter")
    s.add_argument("--importance", type=_enum_arg(Importance), help="Importance filter")
    s.add_argument("--confidentiality", type=_enum_arg(Confidentiality), help="Confidentiality filter")
    s.add_argument("--status", type=_enum_arg(ArchiveStatus), help="Status filter")

    sub.add_parser("alerts", help="List active records past their retention expiry date")

    s = sub.add_parser("audit", help="Show the audit trail, newest first")
    s.add_argument("-n", type=int, default=20, help="Number of entries to show (default: 20)")

    sub.add_parser("policies", help="List retention policies")

    s = sub.add_parser("apply-policy", help="Associate a retention policy with a record")
    s.add_argument("record", help="File id or record id (REC-YYYY-NNNN)")
    s.add_argument("policy", help="Policy id")

    s = sub.add_parser("ask", help="Ask a question about the whole archive")
    s.add_argument("question")

    s = sub.add_parser("chat", help="Ask a question about one record")
    s.add_argument("record", help="File id or record id (REC-YYYY-NNNN)")
    s.add_argument("question")

    s = sub.add_parser("export", help="Export every record to CSV")
    s.add_argument("csv", type=Path, help="Output CSV path")

    s = sub.add_parser("clear", help="Forget every record and the connected directory")
    s.add_argument("--yes", action="store_true", help="Confirm clearing the archive")

    return p

def parse_args(argv=None):
    return build_parser().parse_args(argv)

def resolve_record(app: ArchiveApp, ref: str) -> Optional[FileRecord]:
    return app.store.get(ref) or app.store.find_by_record_id(ref)

def format_record(rec: FileRecord) -> str:
    meta = rec.iso_metadata
    if meta is None:
        return f"{rec.id}  {rec.name}"
    doc_type = meta.document_type.value if meta.document_type else "-"
    flag = " [needs review]" if meta.degraded else ""
    return f"{meta.record_id}  {meta.title}  ({doc_type})  {meta.original_path}{flag}"

def print_report(report: SyncReport):
    print(f"Added: {report.added}  Modified: {report.modified}  Deleted: {report.deleted}")
    for path, reason in report.skipped:
        print(f"  skipped {path}: {reason}")

def run(args) -> int:
    with ArchiveApp(args.db, reset_delay=0, show_progress=True) as app:
        cmd = args.command

        if cmd == "sync":
            print_report(app.pipeline.sync_directory(args.root.resolve()))

        elif cmd == "upload":
            print_report(app.pipeline.sync_uploads(args.files))

        elif cmd == "search":
            results = app.store.search(
                args.query,
                document_type=args.document_type,
                importance=args.importance,
                confidentiality=args.confidentiality,
                status=args.status,
            )
            for rec in results:
                print(format_record(rec))
            logging.info(f"{len(results)} of {len(app.store)} records matched")

        elif cmd == "alerts":
            alerts = app.store.compliance_alerts()
            for rec in alerts:
                meta = rec.iso_metadata
                print(f"{format_record(rec)}  expired {meta.expiry_date} ({meta.retention_policy})")
            if not alerts:
                print("No compliance alerts.")

        elif cmd == "audit":
            for entry in app.audit.recent(args.n):
                print(f"{entry.timestamp}  {entry.action.value:<7} {entry.user}: {entry.details}")

        elif cmd == "policies":
            for pol in app.store.policies:
                targets = ", ".join(t.value for t in pol.target_doc_types)
                print(f"{pol.id}  {pol.name}  {pol.duration_months} months, {pol.action.value}  [{targets}]")

        elif cmd == "apply-policy":
            rec = resolve_record(app, args.record)
            if rec is None:
                logging.error(f"No record matches '{args.record}'")
                return 1
            try:
                updated = app.store.apply_policy(rec.id, args.policy)
            except KeyError as e:
                logging.error(e.args[0])
                return 1
            print(f"{updated.iso_metadata.record_id} expires {updated.iso_metadata.expiry_date}")

        elif cmd == "ask":
            print(app.gateway.ask_archive(args.question, app.store.records))

        elif cmd == "chat":
            rec = resolve_record(app, args.record)
            if rec is None:
                logging.error(f"No record matches '{args.record}'")
                return 1
            print(app.gateway.chat_with_file(args.question, rec))

        elif cmd == "export":
            ReportGenerator(app.store).export_csv(args.csv)

        elif cmd == "clear":
            if not args.yes:
                logging.error("Refusing to clear the archive without --yes")
                return 1
            app.store.clear()
            print("Archive cleared.")

    return 0

def main(argv=None):
    args = parse_args(argv)
    db_path = args.db.resolve()
    args.db = db_path

    setup_logging(db_path, args.verbose)
    logging.debug(f"Archive database: {db_path}")

    try:
        code = run(args)
    except KeyboardInterrupt:
        logging.warning("Operation cancelled by user.")
        sys.exit(1)
    except ArchiverError as e:
        logging.error(str(e))
        sys.exit(1)
    except Exception:
        logging.exception("Fatal error.")
        sys.exit(1)

    if code:
        sys.exit(code)

if __name__ == "__main__":
    main()
