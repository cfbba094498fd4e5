from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from ..exceptions import RenderFailure
from ..records import ProposalSubmission
from ..utils import build_proposal_pdf

logger = logging.getLogger(__name__)


@dataclass
class ProposalResult:
    content: bytes
    content_type: str
    filename: str
    page_count: int
    proposal_code: str


def proposal_filename(now: datetime | None = None) -> str:
    now = now or datetime.now()
    return f"proposta-comercial-folhita-{int(now.timestamp() * 1000)}.pdf"


def generate_proposal(
    submission: ProposalSubmission,
    logo_bytes: bytes | None = None,
    now: datetime | None = None,
) -> ProposalResult:
    now = now or datetime.now()
    try:
        document = build_proposal_pdf(submission, year=now.year, logo_bytes=logo_bytes)
    except Exception as exc:
        logger.exception("Failed to render proposal %s", submission.proposal_code)
        raise RenderFailure() from exc

    return ProposalResult(
        content=document.content,
        content_type="application/pdf",
        filename=proposal_filename(now),
        page_count=document.page_count,
        proposal_code=submission.proposal_code,
    )
