from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Optional, List, Dict, Any, Type, TypeVar

E = TypeVar('E', bound=Enum)


class DocumentType(str, Enum):
    CONTRACT = 'عقد'
    CORRESPONDENCE_IN = 'مراسلة واردة'
    CORRESPONDENCE_OUT = 'مراسلة صادرة'
    INVOICE = 'فاتورة'
    REPORT = 'تقرير'
    FORM = 'نموذج'
    POLICY = 'سياسة/إجراء'
    OTHER = 'أخرى'


class Importance(str, Enum):
    NORMAL = 'عادي'
    IMPORTANT = 'مهم'
    HIGH = 'عالي الأهمية'
    CRITICAL = 'حرج'


class Confidentiality(str, Enum):
    PUBLIC = 'عام'
    INTERNAL = 'داخلي'
    CONFIDENTIAL = 'سري'
    TOP_SECRET = 'سري للغاية'


class ArchiveStatus(str, Enum):
    ACTIVE = 'نشط'
    IN_PROCESS = 'قيد المعاملة'
    CLOSED = 'مغلق'
    ARCHIVED = 'مؤرشف'
    DESTRUCTION_CANDIDATE = 'مرشح للحذف'
    DESTROYED = 'تم الإتلاف'


class RetentionAction(str, Enum):
    ARCHIVE = 'أرشفة دائمة'
    DESTROY = 'إتلاف آمن'
    REVIEW = 'مراجعة إدارية'


class OcrStatus(str, Enum):
    PENDING = 'pending'
    COMPLETED = 'completed'
    FAILED = 'failed'
    SKIPPED = 'skipped'


class AuditAction(str, Enum):
    CREATE = 'CREATE'
    UPDATE = 'UPDATE'
    DELETE = 'DELETE'
    SYNC = 'SYNC'
    POLICY = 'POLICY'
    CLEAR = 'CLEAR'


def coerce_enum(enum_cls: Type[E], value: Any) -> Optional[E]:
    """
    Maps a stored or model-supplied value onto an enum member.
    Accepts the member value ('عقد') or its name ('CONTRACT', 'contract').
    Returns None for anything unrecognised.
    """
    if value is None or value == "":
        return None
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        pass
    key = str(value).strip().upper().replace(' ', '_').replace('-', '_')
    return enum_cls.__members__.get(key)


def _to_camel(name: str) -> str:
    first, *rest = name.split('_')
    return first + ''.join(part.title() for part in rest)


def _dump(obj) -> Dict[str, Any]:
    """Dataclass -> camelCase dict with enums flattened to their values."""
    out = {}
    for f in fields(obj):
        value = getattr(obj, f.name)
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, list):
            value = [v.value if isinstance(v, Enum) else v for v in value]
        out[_to_camel(f.name)] = value
    return out


@dataclass
class ISOMetadata:
    """
    ISO 15489 style classification of one record.
    `original_path` is the reconciliation key; `record_id` and `created_at`
    are fixed at first classification.
    """
    record_id: str
    original_path: str
    title: str
    created_at: str
    updated_at: str
    description: str = ""
    document_type: Optional[DocumentType] = None
    entity: str = ""
    year: Optional[int] = None
    importance: Optional[Importance] = None
    confidentiality: Optional[Confidentiality] = None
    status: ArchiveStatus = ArchiveStatus.ACTIVE
    category: Optional[str] = None
    sender: Optional[str] = None
    recipient: Optional[str] = None
    ocr_status: OcrStatus = OcrStatus.PENDING
    retention_policy: Optional[str] = None
    expiry_date: Optional[str] = None
    retention_assigned: bool = False    # set by a manual policy assignment
    related_file_ids: List[str] = field(default_factory=list)
    degraded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return _dump(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ISOMetadata':
        year = data.get('year')
        return cls(
            record_id=data.get('recordId', ''),
            original_path=data.get('originalPath', ''),
            title=data.get('title') or '',
            created_at=data.get('createdAt') or '',
            updated_at=data.get('updatedAt') or '',
            description=data.get('description') or '',
            document_type=coerce_enum(DocumentType, data.get('documentType')),
            entity=data.get('entity') or '',
            year=int(year) if isinstance(year, (int, float)) or (isinstance(year, str) and year.isdigit()) else None,
            importance=coerce_enum(Importance, data.get('importance')),
            confidentiality=coerce_enum(Confidentiality, data.get('confidentiality')),
            status=coerce_enum(ArchiveStatus, data.get('status')) or ArchiveStatus.ACTIVE,
            category=data.get('category'),
            sender=data.get('sender'),
            recipient=data.get('recipient'),
            ocr_status=coerce_enum(OcrStatus, data.get('ocrStatus')) or OcrStatus.PENDING,
            retention_policy=data.get('retentionPolicy'),
            expiry_date=data.get('expiryDate'),
            retention_assigned=bool(data.get('retentionAssigned', False)),
            related_file_ids=list(data.get('relatedFileIds') or []),
            degraded=bool(data.get('degraded', False)),
        )


@dataclass
class FileRecord:
    """
    Represents one archived document.
    """
    id: str
    name: str
    size: int
    last_modified: int      # epoch milliseconds at last sync
    mime_type: str = ""
    extracted_text: Optional[str] = None
    preview: Optional[str] = None
    checksum: Optional[str] = None
    iso_metadata: Optional[ISOMetadata] = None

    @property
    def path(self) -> Optional[str]:
        return self.iso_metadata.original_path if self.iso_metadata else None

    def to_dict(self) -> Dict[str, Any]:
        data = _dump(self)
        data['isoMetadata'] = self.iso_metadata.to_dict() if self.iso_metadata else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FileRecord':
        meta = data.get('isoMetadata')
        return cls(
            id=str(data['id']),
            name=data.get('name', ''),
            size=int(data.get('size') or 0),
            last_modified=int(data.get('lastModified') or 0),
            # 'type' and 'content' are the field names older archives used
            mime_type=data.get('mimeType') or data.get('type') or '',
            extracted_text=data.get('extractedText', data.get('content')),
            preview=data.get('preview'),
            checksum=data.get('checksum'),
            iso_metadata=ISOMetadata.from_dict(meta) if meta else None,
        )


@dataclass
class RetentionPolicy:
    id: str
    name: str
    description: str
    duration_months: int
    action: RetentionAction
    target_doc_types: List[DocumentType] = field(default_factory=list)

    def applies_to(self, doc_type: Optional[DocumentType]) -> bool:
        return doc_type is not None and doc_type in self.target_doc_types

    def to_dict(self) -> Dict[str, Any]:
        return _dump(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RetentionPolicy':
        doc_types = [coerce_enum(DocumentType, t) for t in data.get('targetDocTypes') or []]
        return cls(
            id=data['id'],
            name=data.get('name', ''),
            description=data.get('description', ''),
            duration_months=int(data.get('durationMonths') or 0),
            action=coerce_enum(RetentionAction, data.get('action')) or RetentionAction.REVIEW,
            target_doc_types=[t for t in doc_types if t is not None],
        )


@dataclass(frozen=True)
class AuditEntry:
    """One line of the audit trail. Never modified after creation."""
    id: str
    action: AuditAction
    details: str
    user: str
    timestamp: str
    resource_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _dump(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEntry':
        return cls(
            id=str(data.get('id', '')),
            action=coerce_enum(AuditAction, data.get('action')) or AuditAction.SYNC,
            details=data.get('details', ''),
            user=data.get('user', ''),
            timestamp=data.get('timestamp', ''),
            resource_id=data.get('resourceId'),
        )


@dataclass
class SnapshotEntry:
    """
    A file seen during a snapshot, keyed by its archive path.
    """
    path: str               # root/sub/name or /local/name
    name: str
    size: int
    last_modified: int      # epoch milliseconds
    location: Path          # where to read the bytes from
    mime_type: str = ""

    @property
    def parent(self) -> str:
        return self.path.rsplit('/', 1)[0] if '/' in self.path else ''


@dataclass
class ModifiedFile:
    entry: SnapshotEntry
    existing_id: str


@dataclass
class ChangeSet:
    added: List[SnapshotEntry] = field(default_factory=list)
    modified: List[ModifiedFile] = field(default_factory=list)
    deleted_ids: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.modified or self.deleted_ids)

    def counts(self) -> Dict[str, int]:
        return {
            'added': len(self.added),
            'modified': len(self.modified),
            'deleted': len(self.deleted_ids),
        }
