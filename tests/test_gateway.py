import json

import pytest

from doc_archiver import config
from doc_archiver.classification.gateway import (
    ClassificationGateway, ClassifiedMetadata, DegradedMetadata, build_archive_summary, extract_json,
)
from doc_archiver.exceptions import ClassificationParseError, ClassificationTransportError
from doc_archiver.models import (
    ArchiveStatus, Confidentiality, DocumentType, Importance, ISOMetadata,
)

from conftest import FakeClient

GOOD = {
    "title": "  Supply contract 2023  ",
    "description": "Annual supply contract",
    "sender": "Acme Ltd",
    "recipient": "Ministry",
    "documentType": "عقد",
    "importance": "HIGH",
    "confidentiality": "سري",
    "year": "2023",
    "relatedFileIds": ["sib1", "summary1", "invented"],
}

SUMMARY = [{"id": "summary1", "recordId": "REC-2024-1000", "title": "Old", "documentType": "", "path": "docs/old.txt"}]

def test_extract_json_strict():
    assert extract_json('{"title": "x"}') == {"title": "x"}

def test_extract_json_from_prose():
    text = 'Sure! Here it is:\n```json\n{"title": "x", "year": 2020}\n```\nAnything else?'
    assert extract_json(text) == {"title": "x", "year": 2020}

@pytest.mark.parametrize("text", ["no json here", "[1, 2, 3]", "{broken: json}", ""])
def test_extract_json_rejects(text):
    with pytest.raises(ClassificationParseError):
        extract_json(text)

def test_classify_normalizes_response():
    client = FakeClient([json.dumps(GOOD)])
    gateway = ClassificationGateway(client)

    result = gateway.classify("contract.docx", "Body text", SUMMARY, ["sib1"])

    assert isinstance(result, ClassifiedMetadata)
    assert not result.degraded
    assert result.title == "Supply contract 2023"
    assert result.document_type == DocumentType.CONTRACT
    assert result.importance == Importance.HIGH
    assert result.confidentiality == Confidentiality.CONFIDENTIAL
    assert result.year == 2023
    # entity falls back to sender
    assert result.entity == "Acme Ltd"
    # ids the model invented are dropped
    assert result.related_file_ids == ["sib1", "summary1"]

def test_prompt_carries_context():
    client = FakeClient([json.dumps(GOOD)])
    ClassificationGateway(client).classify("contract.docx", "Body text", SUMMARY, ["sib1", "sib2"])

    prompt = client.prompts[0]
    assert "contract.docx" in prompt
    assert "Body text" in prompt
    assert "sib1, sib2" in prompt
    assert "REC-2024-1000" in prompt
    assert DocumentType.INVOICE.value in prompt

def test_excerpt_is_bounded():
    client = FakeClient([json.dumps(GOOD)])
    text = "x" * (config.CLASSIFIER_EXCERPT_CHARS + 500)
    ClassificationGateway(client).classify("a.txt", text, [], [])

    assert "x" * config.CLASSIFIER_EXCERPT_CHARS in client.prompts[0]
    assert "x" * (config.CLASSIFIER_EXCERPT_CHARS + 1) not in client.prompts[0]

def test_no_text_uses_file_name_hint():
    client = FakeClient([json.dumps(GOOD)])
    ClassificationGateway(client).classify("scan.pdf", None, [], [], mime_type="application/pdf")

    assert "No extractable text" in client.prompts[0]
    assert "application/pdf" in client.prompts[0]

def test_unknown_enum_values_become_none():
    payload = dict(GOOD, documentType="memo", importance=None, year="unknown")
    result = ClassificationGateway(FakeClient([json.dumps(payload)])).classify("a.txt", "t", [], [])

    assert result.document_type is None
    assert result.importance is None
    assert result.year is None

@pytest.mark.parametrize("response", [
    ClassificationTransportError("quota exceeded"),
    RuntimeError("socket closed"),
    "I cannot help with that.",
    json.dumps({"description": "no title"}),
    json.dumps({"title": "   "}),
])
def test_failures_degrade_to_file_name(response):
    gateway = ClassificationGateway(FakeClient([response]))

    result = gateway.classify("letter.txt", "text", [], [])

    assert isinstance(result, DegradedMetadata)
    assert result.degraded
    assert result.title == "letter.txt"
    assert result.description == config.DEGRADED_DESCRIPTION

def test_successful_results_are_cached():
    client = FakeClient([json.dumps(GOOD)])
    gateway = ClassificationGateway(client)

    first = gateway.classify("a.txt", "same", [], ["s1"])
    second = gateway.classify("a.txt", "same", [], ["s1"])

    assert first is second
    assert len(client.prompts) == 1

def test_degraded_results_are_not_cached():
    client = FakeClient([ClassificationTransportError("down")])
    gateway = ClassificationGateway(client)

    assert gateway.classify("a.txt", "same", [], []).degraded
    assert not gateway.classify("a.txt", "same", [], []).degraded
    assert len(client.prompts) == 2

def test_apply_to_sets_active_status():
    meta = ISOMetadata(record_id="REC-2024-1000", original_path="docs/a.txt", title="old",
                       created_at="", updated_at="", status=ArchiveStatus.CLOSED, degraded=True)

    ClassifiedMetadata(title="new", document_type=DocumentType.REPORT).apply_to(meta)

    assert meta.title == "new"
    assert meta.document_type == DocumentType.REPORT
    assert meta.status == ArchiveStatus.ACTIVE
    assert not meta.degraded

def test_build_archive_summary_is_capped(make_record):
    records = [make_record(f"docs/{i}.txt") for i in range(5)]

    summary = build_archive_summary(records, limit=3)

    assert [s["id"] for s in summary] == [r.id for r in records[:3]]
    assert summary[0]["path"] == "docs/0.txt"

def test_ask_archive_answers_and_falls_back(make_record):
    records = [make_record("docs/a.txt")]

    ok = ClassificationGateway(FakeClient(["  Three contracts.  "]))
    assert ok.ask_archive("How many contracts?", records) == "Three contracts."

    broken = ClassificationGateway(FakeClient([ClassificationTransportError("down")]))
    assert broken.ask_archive("How many contracts?", records) == "An error occurred while contacting the AI engine."

def test_chat_with_file_uses_extracted_text(make_record):
    rec = make_record("docs/a.txt")
    rec.extracted_text = "Payment due 2025-01-01"
    client = FakeClient(["January 2025"])

    answer = ClassificationGateway(client).chat_with_file("When is payment due?", rec)

    assert answer == "January 2025"
    assert "Payment due 2025-01-01" in client.prompts[0]
    assert "When is payment due?" in client.prompts[0]

def test_chat_with_file_falls_back(make_record):
    rec = make_record("docs/a.txt")
    gateway = ClassificationGateway(FakeClient([RuntimeError("boom")]))

    answer = gateway.chat_with_file("anything", rec)

    assert answer == "An error occurred while processing your question about the file."
