from __future__ import annotations

import logging
import time
from pathlib import Path

from django.conf import settings
from django.contrib import messages
from django.http import HttpRequest, HttpResponse, JsonResponse
from django.shortcuts import render
from django.urls import reverse
from django.views.decorators.clickjacking import xframe_options_exempt
from django.views.decorators.http import require_GET

from .exceptions import OperationInProgress, ProposalError
from .form_model import ProposalFormModel
from .forms import PlanForm, ProposalForm, TaxIdLookupForm
from .records import PLAN_FIELDS, ClientRecord
from .services.cnpj_service import clean_tax_id, format_tax_id, lookup_by_tax_id
from .services.proposal_service import generate_proposal
from .storage import document_cache

logger = logging.getLogger(__name__)

TEMPLATE = "catalogo/index.html"
FORM_SESSION_KEY = "proposal_form"
GENERATING_SESSION_KEY = "is_generating"
DOCUMENT_TOKEN_SESSION_KEY = "document_token"
DOCUMENT_INFO_SESSION_KEY = "document_info"

LAST_PLAN_WARNING = "Você deve ter pelo menos um plano"


def _load_model(request: HttpRequest) -> ProposalFormModel:
    return ProposalFormModel.from_dict(
        request.session.get(FORM_SESSION_KEY),
        stale_after=settings.CNPJ_LOOKUP_TIMEOUT + settings.BUSY_FLAG_MARGIN,
    )


def _store_model(request: HttpRequest, model: ProposalFormModel) -> None:
    request.session[FORM_SESSION_KEY] = model.to_dict()


def _logo_bytes() -> bytes | None:
    if not settings.FOLHITA_LOGO_PATH:
        return None
    logo_path = Path(settings.FOLHITA_LOGO_PATH)
    if not logo_path.is_file():
        logger.warning("Logo %s not found, rendering without it", logo_path)
        return None
    return logo_path.read_bytes()


def _apply_edits(request: HttpRequest, model: ProposalFormModel) -> None:
    form = ProposalForm(request.POST)
    if "valid_until" in request.POST and form.is_valid():
        model.set_valid_until(form.cleaned_data["valid_until"])

    for plan in model.plans:
        plan_form = PlanForm(request.POST, prefix=plan.id)
        if not plan_form.is_valid():
            continue
        for field in PLAN_FIELDS:
            if plan_form.add_prefix(field) in request.POST:
                model.update_field(plan.id, field, plan_form.cleaned_data[field])


def _lookup_client(request: HttpRequest, model: ProposalFormModel) -> None:
    raw_tax_id = request.POST.get("tax_id", "")

    def _lookup(raw: str) -> ClientRecord:
        # Persist the busy flag so a second request sees it while this one waits.
        _store_model(request, model)
        request.session.save()
        return lookup_by_tax_id(raw)

    try:
        record = model.lookup_client(raw_tax_id, lookup=_lookup)
    except ProposalError as exc:
        messages.error(request, exc.message)
        return
    messages.success(request, f"Empresa encontrada: {record.trade_name}")


def _generation_busy(request: HttpRequest) -> bool:
    started_at = request.session.get(GENERATING_SESSION_KEY)
    if not started_at:
        return False
    if time.time() - started_at < settings.PROPOSAL_RENDER_STALE_AFTER:
        return True
    logger.warning("Clearing stale render flag set at %s", started_at)
    return False


def _generate(request: HttpRequest, model: ProposalFormModel) -> None:
    if _generation_busy(request):
        messages.error(request, OperationInProgress().message)
        return

    try:
        submission = model.submit()
    except ProposalError as exc:
        messages.error(request, exc.message)
        return

    request.session[GENERATING_SESSION_KEY] = time.time()
    request.session.save()
    try:
        result = generate_proposal(submission, logo_bytes=_logo_bytes())
    except ProposalError as exc:
        messages.error(request, exc.message)
        return
    finally:
        request.session[GENERATING_SESSION_KEY] = None

    token = document_cache.replace(
        request.session.get(DOCUMENT_TOKEN_SESSION_KEY),
        result.content,
        result.content_type,
        result.filename,
    )
    request.session[DOCUMENT_TOKEN_SESSION_KEY] = token
    request.session[DOCUMENT_INFO_SESSION_KEY] = {
        "filename": result.filename,
        "proposal_code": result.proposal_code,
        "page_count": result.page_count,
    }
    messages.success(request, f"PDF gerado com sucesso! Código: {result.proposal_code}")


def _context(request: HttpRequest, model: ProposalFormModel) -> dict:
    plans = model.plans
    if model.client is not None:
        tax_id = model.client.tax_id
    else:
        tax_id = format_tax_id(clean_tax_id(request.POST.get("tax_id", "")))
    context = {
        "form": ProposalForm(initial={"valid_until": model.valid_until}),
        "plan_forms": [
            (index, plan, PlanForm(initial=plan.to_dict(), prefix=plan.id))
            for index, plan in enumerate(plans, start=1)
        ],
        "can_remove": len(plans) > 1,
        "lookup_form": TaxIdLookupForm(initial={"tax_id": tax_id}),
        "client": model.client,
        "lookup_in_progress": model.lookup_in_progress,
    }

    token = request.session.get(DOCUMENT_TOKEN_SESSION_KEY)
    if token and token in document_cache:
        info = request.session.get(DOCUMENT_INFO_SESSION_KEY) or {}
        context["preview_url"] = reverse("preview_pdf", kwargs={"token": token})
        context["download_url"] = reverse("download_file", kwargs={"token": token})
        context["download_label"] = "Baixar PDF"
        context["download_filename"] = info.get("filename", "")
        context["proposal_code"] = info.get("proposal_code", "")
    return context


def proposal_catalog(request: HttpRequest) -> HttpResponse:
    model = _load_model(request)
    if request.method != "POST":
        # Plan ids must stay stable between the rendered form and the next POST.
        _store_model(request, model)
        return render(request, TEMPLATE, _context(request, model))

    _apply_edits(request, model)

    action, _, plan_id = request.POST.get("action", "").partition(":")
    if action == "add_plan":
        model.add_plan()
    elif action == "remove_plan":
        if not model.remove_plan(plan_id):
            messages.warning(request, LAST_PLAN_WARNING)
    elif action == "lookup":
        _lookup_client(request, model)
    elif action == "generate":
        _generate(request, model)

    _store_model(request, model)
    return render(request, TEMPLATE, _context(request, model))


@require_GET
def mask_tax_id(request: HttpRequest) -> JsonResponse:
    raw = request.GET.get("tax_id", "")
    return JsonResponse({"tax_id": format_tax_id(clean_tax_id(raw))})


@require_GET
@xframe_options_exempt
def preview_pdf(request: HttpRequest, token: str) -> HttpResponse:
    stored = document_cache.get(token)
    if not stored:
        return HttpResponse("PDF não encontrado.", status=404)
    content, content_type, filename = stored
    if content_type != "application/pdf" or not content.startswith(b"%PDF-"):
        logger.error("Document %s is not a valid PDF", token)
        return HttpResponse("Conteúdo de PDF inválido.", status=500)
    response = HttpResponse(content, content_type="application/pdf")
    response["Content-Disposition"] = f'inline; filename="{filename}"'
    response["Content-Length"] = str(len(content))
    response["Cache-Control"] = "no-store"
    return response


@require_GET
def download_file(request: HttpRequest, token: str) -> HttpResponse:
    stored = document_cache.get(token)
    if not stored:
        return HttpResponse("Arquivo não encontrado.", status=404)
    content, content_type, filename = stored
    response = HttpResponse(content, content_type=content_type)
    response["Content-Disposition"] = f'attachment; filename="{filename}"'
    response["Content-Length"] = str(len(content))
    response["Cache-Control"] = "no-store"
    return response
