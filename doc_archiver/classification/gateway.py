"""
Classification gateway: prompt building, response parsing and validation
around the external model.

classify() is best-effort. Transport or parse failures produce a
DegradedMetadata stub so that a file is always archived, even with poor
metadata.
"""
import hashlib
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .. import config
from ..exceptions import ClassificationError, ClassificationParseError
from ..models import (
    ArchiveStatus, Confidentiality, DocumentType, FileRecord, Importance,
    ISOMetadata, coerce_enum,
)


class TextModel(Protocol):
    def generate(self, prompt: str, json_mode: bool = False) -> str: ...


class ClassifierResponse(BaseModel):
    """Schema for LLM response validation."""

    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    title: str = Field(min_length=1)
    description: Optional[str] = None
    sender: Optional[str] = None
    recipient: Optional[str] = None
    category: Optional[str] = None
    entity: Optional[str] = None
    document_type: Optional[str] = Field(default=None, alias='documentType')
    importance: Optional[str] = None
    confidentiality: Optional[str] = None
    year: Optional[int] = None
    related_file_ids: List[str] = Field(default_factory=list, alias='relatedFileIds')

    @field_validator('title', mode='before')
    @classmethod
    def _strip_title(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator('year', mode='before')
    @classmethod
    def _lenient_year(cls, v):
        # Models answer "2023", 2023, "unknown" or null; only keep plausible years
        try:
            year = int(str(v).strip()[:4])
        except (TypeError, ValueError):
            return None
        return year if 1800 <= year <= 2200 else None

    @field_validator('related_file_ids', mode='before')
    @classmethod
    def _list_of_ids(cls, v):
        if not isinstance(v, list):
            return []
        return [str(x) for x in v if x is not None]


@dataclass
class ClassifiedMetadata:
    title: str
    description: str = ""
    document_type: Optional[DocumentType] = None
    entity: str = ""
    year: Optional[int] = None
    importance: Optional[Importance] = None
    confidentiality: Optional[Confidentiality] = None
    category: Optional[str] = None
    sender: Optional[str] = None
    recipient: Optional[str] = None
    related_file_ids: List[str] = field(default_factory=list)
    degraded: bool = field(default=False, init=False)

    def apply_to(self, meta: ISOMetadata):
        meta.title = self.title
        meta.description = self.description
        meta.document_type = self.document_type
        meta.entity = self.entity
        meta.year = self.year
        meta.importance = self.importance
        meta.confidentiality = self.confidentiality
        meta.category = self.category
        meta.sender = self.sender
        meta.recipient = self.recipient
        meta.related_file_ids = list(self.related_file_ids)
        meta.status = ArchiveStatus.ACTIVE
        meta.degraded = False


@dataclass
class DegradedMetadata:
    """Fallback when the classifier cannot be reached or understood."""
    title: str
    reason: str
    description: str = config.DEGRADED_DESCRIPTION
    degraded: bool = field(default=True, init=False)

    def apply_to(self, meta: ISOMetadata):
        meta.title = self.title
        meta.description = self.description
        meta.status = ArchiveStatus.ACTIVE
        meta.degraded = True


ClassificationResult = Union[ClassifiedMetadata, DegradedMetadata]


def build_archive_summary(records: Sequence[FileRecord],
                          limit: int = config.ARCHIVE_SUMMARY_LIMIT) -> List[Dict[str, str]]:
    """Compact view of the most recent records, for cross-reference hints."""
    summary = []
    for rec in records[:limit]:
        meta = rec.iso_metadata
        summary.append({
            'id': rec.id,
            'recordId': meta.record_id if meta else '',
            'title': (meta.title if meta else '') or rec.name,
            'documentType': meta.document_type.value if meta and meta.document_type else '',
            'path': rec.path or '',
        })
    return summary


def extract_json(text: str) -> Dict[str, Any]:
    """
    Strict parse first, then the first {...} block (models like to wrap JSON
    in prose or code fences).

    Raises:
        ClassificationParseError: if neither yields a JSON object.
    """
    cleaned = (text or "").strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", cleaned, re.DOTALL)
        if not match:
            raise ClassificationParseError("response contains no JSON object")
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise ClassificationParseError(f"embedded JSON is malformed: {e}") from e

    if not isinstance(data, dict):
        raise ClassificationParseError(f"expected a JSON object, got {type(data).__name__}")
    return data


class ClassificationGateway:

    PROMPT_TEMPLATE = """You are a records manager applying ISO 15489. Classify this document.

File name: {file_name}
Extracted text (excerpt):
---
{excerpt}
---

Files in the same folder (ids): {siblings}

Recently archived records (id | record id | title | type | path), for cross-reference
and duplicate detection:
{summary}

Return ONLY a JSON object with these keys:
- title: formal, professional title of the document (required)
- description: executive summary, 50-100 words
- sender: issuing person or organisation
- recipient: receiving person or organisation
- entity: main organisation the document concerns
- category: subject category
- documentType: one of {doc_types}
- importance: one of {importance}
- confidentiality: one of {confidentiality}
- year: four-digit year of the document, if known
- relatedFileIds: ids from the lists above that this document relates to
Answer in the document's language."""

    def __init__(self, client: TextModel, use_cache: bool = True):
        self.client = client
        self.use_cache = use_cache
        self._cache: Dict[str, ClassifiedMetadata] = {}

    def classify(self,
                 file_name: str,
                 text: Optional[str],
                 archive_summary: Sequence[Dict[str, str]],
                 sibling_ids: Sequence[str],
                 mime_type: str = "") -> ClassificationResult:
        """
        Never raises. Returns ClassifiedMetadata on success, DegradedMetadata
        otherwise.
        """
        excerpt = self._excerpt(text, file_name, mime_type)
        summary = list(archive_summary)[:config.ARCHIVE_SUMMARY_LIMIT]

        cache_key = self._cache_key(file_name, excerpt, sibling_ids)
        if self.use_cache and cache_key in self._cache:
            logging.debug(f"Classifier cache hit for {file_name}")
            return self._cache[cache_key]

        prompt = self._build_prompt(file_name, excerpt, summary, sibling_ids)
        try:
            raw = self.client.generate(prompt, json_mode=True)
            data = extract_json(raw)
            try:
                validated = ClassifierResponse.model_validate(data)
            except ValidationError as e:
                raise ClassificationParseError(f"response failed validation: {e.error_count()} errors") from e
        except ClassificationError as e:
            logging.warning(f"Classification degraded for {file_name}: {e}")
            return DegradedMetadata(title=file_name, reason=str(e))
        except Exception as e:
            logging.error(f"Unexpected classifier failure for {file_name}: {e}")
            return DegradedMetadata(title=file_name, reason=str(e))

        known_ids = set(sibling_ids) | {s['id'] for s in summary}
        result = ClassifiedMetadata(
            title=validated.title,
            description=validated.description or "",
            document_type=coerce_enum(DocumentType, validated.document_type),
            entity=validated.entity or validated.sender or "",
            year=validated.year,
            importance=coerce_enum(Importance, validated.importance),
            confidentiality=coerce_enum(Confidentiality, validated.confidentiality),
            category=validated.category,
            sender=validated.sender,
            recipient=validated.recipient,
            related_file_ids=[i for i in validated.related_file_ids if i in known_ids],
        )
        if self.use_cache:
            self._cache[cache_key] = result
        return result

    # --- Chat ---

    def ask_archive(self, query: str, records: Sequence[FileRecord]) -> str:
        """Free-form question about the archive as a whole."""
        lines = []
        for rec in records[:config.CHAT_CONTEXT_LIMIT]:
            meta = rec.iso_metadata
            if meta is None:
                lines.append(f"[-] {rec.name}")
                continue
            lines.append(
                f"[{meta.record_id}] title: {meta.title or rec.name}, "
                f"type: {meta.document_type.value if meta.document_type else '---'}, "
                f"entity: {meta.entity or '---'}, "
                f"importance: {meta.importance.value if meta.importance else '---'}"
            )
        prompt = (
            "You are the archive's records assistant. You know these records:\n"
            "---\n" + "\n".join(lines) + "\n---\n"
            f"Answer the user's question professionally, in the user's language: {query}"
        )
        try:
            return self.client.generate(prompt).strip() or "Sorry, I could not find the requested information."
        except Exception as e:
            logging.error(f"Archive chat failed: {e}")
            return "An error occurred while contacting the AI engine."

    def chat_with_file(self, query: str, record: FileRecord) -> str:
        """Question about one record, answered from its extracted text."""
        content = (record.extracted_text or "")[:config.CHAT_FILE_CONTENT_LIMIT]
        prompt = (
            "You are a professional archiving assistant. The working context is this document:\n"
            f"File name: {record.name}\n"
            "Extracted content:\n---\n" + content + "\n---\n"
            f"Answer the following question in the user's language: {query}\n"
            "If the content looks sparse, draw reasonable conclusions from the file name "
            "and what is available."
        )
        try:
            return self.client.generate(prompt).strip() or "I could not extract a precise answer."
        except Exception as e:
            logging.error(f"File chat failed for {record.name}: {e}")
            return "An error occurred while processing your question about the file."

    # --- Helpers ---

    def _excerpt(self, text: Optional[str], file_name: str, mime_type: str) -> str:
        if text and text.strip():
            return text.strip()[:config.CLASSIFIER_EXCERPT_CHARS]
        kind = mime_type or "binary"
        return f"[No extractable text. Content type: {kind}. Classify from the file name: {file_name}]"

    def _build_prompt(self, file_name, excerpt, summary, sibling_ids) -> str:
        summary_lines = "\n".join(
            f"{s['id']} | {s['recordId']} | {s['title']} | {s['documentType'] or '---'} | {s['path']}"
            for s in summary
        ) or "(archive is empty)"
        return self.PROMPT_TEMPLATE.format(
            file_name=file_name,
            excerpt=excerpt,
            siblings=", ".join(sibling_ids) or "(none)",
            summary=summary_lines,
            doc_types=" / ".join(t.value for t in DocumentType),
            importance=" / ".join(i.value for i in Importance),
            confidentiality=" / ".join(c.value for c in Confidentiality),
        )

    def _cache_key(self, file_name: str, excerpt: str, sibling_ids: Sequence[str]) -> str:
        combined = "::".join([file_name, excerpt, ",".join(sorted(sibling_ids))])
        return hashlib.sha256(combined.encode('utf-8')).hexdigest()
