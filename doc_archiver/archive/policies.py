"""
Retention policies and expiry-date arithmetic.

Policies are advisory: the pipeline derives an expiry date from the first
policy that targets a record's document type, but nothing is ever destroyed
automatically.
"""
import calendar
import logging
from datetime import date, datetime
from typing import Iterable, Optional

from ..models import DocumentType, ISOMetadata, RetentionAction, RetentionPolicy

DEFAULT_POLICIES = [
    RetentionPolicy(
        id='pol_fin_01',
        name='Financial and tax records',
        description='Invoices and financial records are kept for 10 years as legally required.',
        duration_months=120,
        action=RetentionAction.DESTROY,
        target_doc_types=[DocumentType.INVOICE, DocumentType.CONTRACT],
    ),
    RetentionPolicy(
        id='pol_corr_01',
        name='General correspondence',
        description='Routine administrative correspondence is kept for two years, then reviewed.',
        duration_months=24,
        action=RetentionAction.REVIEW,
        target_doc_types=[DocumentType.CORRESPONDENCE_IN, DocumentType.CORRESPONDENCE_OUT],
    ),
    RetentionPolicy(
        id='pol_perm_01',
        name='Policies and structures',
        description='Founding documents and policies are kept permanently.',
        duration_months=1200,
        action=RetentionAction.ARCHIVE,
        target_doc_types=[DocumentType.POLICY, DocumentType.REPORT],
    ),
]


def add_months(start: date, months: int) -> date:
    """Calendar month arithmetic, clamping to the last day (Jan 31 + 1 -> Feb 28/29)."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def compute_expiry(created_at: str, duration_months: int) -> Optional[str]:
    """ISO date on which a record created at `created_at` expires, or None if unparseable."""
    try:
        start = datetime.fromisoformat(created_at).date()
    except (TypeError, ValueError):
        logging.debug(f"Cannot compute expiry from created_at={created_at!r}")
        return None
    return add_months(start, duration_months).isoformat()


def match_policy(policies: Iterable[RetentionPolicy],
                 doc_type: Optional[DocumentType]) -> Optional[RetentionPolicy]:
    for policy in policies:
        if policy.applies_to(doc_type):
            return policy
    return None


def apply_retention(meta: ISOMetadata, policy: RetentionPolicy):
    meta.retention_policy = policy.name
    meta.expiry_date = compute_expiry(meta.created_at, policy.duration_months)
