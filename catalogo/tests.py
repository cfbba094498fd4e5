import tempfile
import time
from datetime import datetime
from io import BytesIO
from unittest import mock

import requests
from django.test import SimpleTestCase, TestCase, override_settings
from django.urls import reverse
from PIL import Image as PilImage
from reportlab.platypus import Paragraph

from .exceptions import (
    IncompletePlan,
    InvalidIdentifier,
    LookupFailed,
    MissingValidity,
    OperationInProgress,
    RenderFailure,
)
from .form_model import (
    ProposalFormModel,
    extract_location,
    format_value_with_currency,
    generate_proposal_code,
)
from .records import ClientRecord, ProposalPlan, ProposalSubmission
from .services.cnpj_service import format_tax_id, lookup_by_tax_id
from .services.proposal_service import generate_proposal, proposal_filename
from .storage import DocumentCache, document_cache
from .utils import (
    _build_styles,
    _plans_table,
    build_proposal_pdf,
    format_currency,
    last_day_of_month_label,
    proposal_table_rows,
)
from .views import _logo_bytes

REQUESTS_GET = "catalogo.services.cnpj_service.requests.get"

REGISTRY_PAYLOAD = {
    "cnpj": "11222333000181",
    "razao_social": "FOLHITA COMUNICACAO VISUAL LTDA",
    "nome_fantasia": "Folhita",
    "email": "contato@folhita.com.br",
    "ddd_telefone_1": "7399827391",
    "logradouro": "PRACA CASTELO BRANCO",
    "numero": "10",
    "bairro": "CENTRO",
    "municipio": "ITAMARAJU",
    "uf": "BA",
    "cep": "45836000",
}


def _registry_response(payload=None, status_error=None):
    response = mock.Mock()
    response.json.return_value = REGISTRY_PAYLOAD if payload is None else payload
    if status_error is not None:
        response.raise_for_status.side_effect = status_error
    return response


def _client_record(**overrides):
    data = {
        "tax_id": "11.222.333/0001-81",
        "legal_name": "FOLHITA COMUNICACAO VISUAL LTDA",
        "trade_name": "Folhita",
    }
    data.update(overrides)
    return ClientRecord(**data)


def _complete_model(**plan_values):
    model = ProposalFormModel()
    model.set_valid_until("Julho")
    plan_id = model.plans[0].id
    values = {
        "duration": "15 SEG",
        "location": "EUNÁPOLIS/BA - BR101",
        "contract_time": "12 meses",
        "value": "1200",
    }
    values.update(plan_values)
    for field, value in values.items():
        model.update_field(plan_id, field, value)
    return model


def _png_bytes():
    buffer = BytesIO()
    PilImage.new("RGB", (120, 40), (0, 255, 65)).save(buffer, format="PNG")
    return buffer.getvalue()


@override_settings(CNPJ_LOOKUP_URL="https://registry.test/cnpj/{cnpj}", CNPJ_LOOKUP_TIMEOUT=5)
class CnpjLookupTests(SimpleTestCase):
    def test_format_tax_id_masks_fourteen_digits(self):
        self.assertEqual(format_tax_id("11222333000181"), "11.222.333/0001-81")

    def test_format_tax_id_passes_other_lengths_through(self):
        self.assertEqual(format_tax_id("1122233"), "1122233")
        self.assertEqual(format_tax_id(""), "")

    def test_formatted_identifier_is_cleaned_before_lookup(self):
        with mock.patch(REQUESTS_GET, return_value=_registry_response()) as get:
            record = lookup_by_tax_id("11.222.333/0001-81")

        get.assert_called_once_with("https://registry.test/cnpj/11222333000181", timeout=5)
        self.assertEqual(record.tax_id, "11.222.333/0001-81")
        self.assertEqual(record.legal_name, "FOLHITA COMUNICACAO VISUAL LTDA")
        self.assertEqual(record.trade_name, "Folhita")
        self.assertEqual(record.city, "ITAMARAJU")
        self.assertEqual(record.postal_code, "45836000")

    def test_short_identifier_is_rejected_without_network_call(self):
        with mock.patch(REQUESTS_GET) as get:
            with self.assertRaises(InvalidIdentifier):
                lookup_by_tax_id("123")
        get.assert_not_called()

    def test_missing_fields_default_to_empty_and_trade_name_to_legal_name(self):
        payload = {"razao_social": "ACME LTDA", "nome_fantasia": None}
        with mock.patch(REQUESTS_GET, return_value=_registry_response(payload)):
            record = lookup_by_tax_id("11222333000181")

        self.assertEqual(record.trade_name, "ACME LTDA")
        self.assertEqual(record.email, "")
        self.assertEqual(record.street, "")
        self.assertEqual(record.address_line, "")

    def test_not_found_raises_lookup_failed(self):
        response = _registry_response(status_error=requests.HTTPError("404 Not Found"))
        with mock.patch(REQUESTS_GET, return_value=response):
            with self.assertRaises(LookupFailed):
                lookup_by_tax_id("11222333000181")

    def test_network_error_raises_lookup_failed(self):
        with mock.patch(REQUESTS_GET, side_effect=requests.ConnectionError("offline")) as get:
            with self.assertRaises(LookupFailed):
                lookup_by_tax_id("11222333000181")
        self.assertEqual(get.call_count, 1)

    def test_unexpected_payload_raises_lookup_failed(self):
        with mock.patch(REQUESTS_GET, return_value=_registry_response(["not", "a", "record"])):
            with self.assertRaises(LookupFailed):
                lookup_by_tax_id("11222333000181")


class ProposalFormModelTests(SimpleTestCase):
    def test_starts_with_one_default_plan(self):
        model = ProposalFormModel()
        self.assertEqual(model.valid_until, "")
        self.assertEqual(len(model.plans), 1)
        plan = model.plans[0]
        self.assertEqual(plan.duration, "10 SEG")
        self.assertEqual(plan.contract_time, "30 dias")
        self.assertEqual(plan.location, "")
        self.assertEqual(plan.value, "")
        self.assertIsNone(model.client)

    def test_removing_last_plan_is_rejected(self):
        model = ProposalFormModel()
        self.assertFalse(model.remove_plan(model.plans[0].id))
        self.assertEqual(len(model.plans), 1)

    def test_plans_never_drop_to_zero(self):
        model = ProposalFormModel()
        second = model.add_plan()
        third = model.add_plan()
        first_id = model.plans[0].id

        self.assertTrue(model.remove_plan(second.id))
        self.assertTrue(model.remove_plan(first_id))
        self.assertFalse(model.remove_plan(third.id))
        self.assertEqual([plan.id for plan in model.plans], [third.id])

    def test_added_plans_get_unique_ids_in_order(self):
        model = ProposalFormModel()
        added = [model.add_plan() for _ in range(3)]
        ids = [plan.id for plan in model.plans]
        self.assertEqual(len(set(ids)), 4)
        self.assertEqual(ids[1:], [plan.id for plan in added])

    def test_update_field_targets_one_plan(self):
        model = ProposalFormModel()
        other = model.add_plan()
        first_id = model.plans[0].id

        self.assertTrue(model.update_field(first_id, "value", "R$ 900"))
        self.assertEqual(model.plans[0].value, "R$ 900")
        self.assertEqual(model.plans[1].value, "")
        self.assertFalse(model.update_field("missing", "value", "1"))
        self.assertEqual(model.plans[1].id, other.id)

    def test_update_field_rejects_unknown_field(self):
        model = ProposalFormModel()
        with self.assertRaises(ValueError):
            model.update_field(model.plans[0].id, "id", "x")

    def test_plans_are_read_only_copies(self):
        model = ProposalFormModel()
        model.plans[0].value = "999"
        self.assertEqual(model.plans[0].value, "")

    def test_submit_requires_validity_month(self):
        model = _complete_model()
        model.set_valid_until("")
        with self.assertRaises(MissingValidity):
            model.submit()

    def test_submit_requires_location_and_value(self):
        model = _complete_model()
        model.add_plan()
        before = model.to_dict()
        with self.assertRaises(IncompletePlan):
            model.submit()
        self.assertEqual(model.to_dict(), before)

    def test_submit_end_to_end(self):
        model = _complete_model()
        plan_id = model.plans[0].id

        submission = model.submit(now=datetime(2025, 7, 4, 9, 5, 3))

        self.assertEqual(submission.valid_until, "Julho")
        self.assertEqual(submission.location, "Eunápolis - BA")
        self.assertEqual(submission.proposal_code, "FCV250704090503")
        self.assertEqual(len(submission.plans), 1)
        self.assertEqual(submission.plans[0].id, plan_id)
        self.assertEqual(submission.plans[0].value, "R$ 1200")
        self.assertIsNone(submission.client)
        self.assertEqual(model.plans[0].value, "1200")

    def test_submit_carries_client_record(self):
        model = _complete_model()
        model.client = _client_record()
        self.assertEqual(model.submit().client, _client_record())

    def test_each_submission_is_a_fresh_value(self):
        model = _complete_model()
        first = model.submit(now=datetime(2025, 1, 1, 0, 0, 0))
        model.update_field(model.plans[0].id, "value", "500")
        second = model.submit(now=datetime(2025, 1, 1, 0, 0, 1))
        self.assertEqual(first.plans[0].value, "R$ 1200")
        self.assertEqual(second.plans[0].value, "R$ 500")

    def test_proposal_code_matches_timestamp(self):
        now = datetime(2031, 12, 31, 23, 59, 58)
        code = generate_proposal_code(now)
        self.assertRegex(code, r"^FCV\d{12}$")
        self.assertEqual(code, "FCV311231235958")
        self.assertRegex(generate_proposal_code(), r"^FCV\d{12}$")

    def test_location_lookup_table(self):
        self.assertEqual(extract_location("ITAMARAJÚ/BA - PRAÇA CASTELO BRANCO"), "Itamarajú - BA")
        self.assertEqual(extract_location("EUNÁPOLIS/BA - BR101"), "Eunápolis - BA")
        self.assertEqual(extract_location("EUNÁPOLIS/BA - BR367"), "Eunápolis - BA")
        self.assertEqual(extract_location("PORTO SEGURO/BA"), "Itamarajú - BA")

    def test_currency_prefix_normalization(self):
        self.assertEqual(format_value_with_currency("1.650,00"), "R$ 1.650,00")
        self.assertEqual(format_value_with_currency("1200 /por mês"), "R$ 1200 /por mês")
        self.assertEqual(format_value_with_currency("R$ 1.650,00"), "R$ 1.650,00")
        self.assertEqual(format_value_with_currency("R$1200"), "R$1200")

    def test_lookup_stores_record_on_success(self):
        model = ProposalFormModel()
        record = _client_record()
        lookup = mock.Mock(return_value=record)

        self.assertEqual(model.lookup_client("11.222.333/0001-81", lookup=lookup), record)
        self.assertEqual(model.client, record)
        self.assertFalse(model.lookup_in_progress)

    def test_failed_lookup_keeps_previous_client(self):
        previous = _client_record()
        model = ProposalFormModel(client=previous)
        lookup = mock.Mock(side_effect=LookupFailed())

        with self.assertRaises(LookupFailed):
            model.lookup_client("11222333000181", lookup=lookup)
        self.assertEqual(model.client, previous)
        self.assertFalse(model.lookup_in_progress)

    def test_lookup_is_refused_while_one_is_outstanding(self):
        model = ProposalFormModel(lookup_started_at=time.time())
        lookup = mock.Mock()
        with self.assertRaises(OperationInProgress):
            model.lookup_client("11222333000181", lookup=lookup)
        lookup.assert_not_called()
        self.assertTrue(model.lookup_in_progress)

    def test_abandoned_lookup_flag_expires(self):
        model = ProposalFormModel(lookup_started_at=1000.0, stale_after=15)
        self.assertTrue(model.lookup_busy(now=1014.0))
        self.assertFalse(model.lookup_busy(now=1015.0))

        record = _client_record()
        with self.assertLogs("catalogo.form_model", "WARNING"):
            self.assertEqual(model.lookup_client("11222333000181", lookup=mock.Mock(return_value=record)), record)
        self.assertIsNone(model.lookup_started_at)
        self.assertEqual(model.client, record)

    def test_session_round_trip(self):
        model = _complete_model()
        model.add_plan()
        model.client = _client_record(city="ITAMARAJU")

        restored = ProposalFormModel.from_dict(model.to_dict())

        self.assertEqual(restored.to_dict(), model.to_dict())
        self.assertEqual(ProposalFormModel.from_dict(None).valid_until, "")


class ProposalRendererTests(SimpleTestCase):
    def _submission(self, **overrides):
        data = {
            "valid_until": "Julho",
            "plans": (
                ProposalPlan(
                    id="a1",
                    duration="15 SEG",
                    location="EUNÁPOLIS/BA - BR101",
                    contract_time="12 meses",
                    value="R$ 1200",
                ),
            ),
            "proposal_code": "FCV250704090503",
            "location": "Eunápolis - BA",
        }
        data.update(overrides)
        return ProposalSubmission(**data)

    def test_format_currency_plain_number(self):
        self.assertEqual(format_currency("R$ 1200"), "R$ 1.200,00")
        self.assertEqual(format_currency("850"), "R$ 850,00")

    def test_format_currency_brazilian_number(self):
        self.assertEqual(format_currency("1.650,00"), "R$ 1.650,00")
        self.assertEqual(format_currency("R$1.250,5"), "R$ 1.250,50")
        self.assertEqual(format_currency("R$ 1.234.567,891"), "R$ 1.234.567,89")

    def test_format_currency_is_idempotent(self):
        once = format_currency("R$ 1.250,00")
        self.assertEqual(once, "R$ 1.250,00")
        self.assertEqual(format_currency(once), once)

    def test_format_currency_falls_back_to_original_text(self):
        self.assertEqual(format_currency("R$ a combinar"), "R$ a combinar")
        self.assertEqual(format_currency("R$1.200,00 /por mês"), "R$1.200,00 /por mês")
        self.assertEqual(format_currency(""), "")
        self.assertEqual(format_currency("Infinity"), "Infinity")

    def test_format_currency_handles_very_large_amounts(self):
        self.assertEqual(
            format_currency("12345678901234567890123456789"),
            "R$ 12.345.678.901.234.567.890.123.456.789,00",
        )
        self.assertEqual(format_currency("1e30"), "R$ 1" + ".000" * 10 + ",00")
        self.assertEqual(format_currency("1e999999999"), "1e999999999")

    def test_value_cell_wraps_inside_its_column(self):
        rows = [
            ["DURAÇÃO DO VÍDEO", "LOCAL", "TEMPO DE CONTRATO", "VALOR"],
            ["10 SEG", "EUNÁPOLIS/BA - BR367", "30 dias", "R$1.200,00 /por mês & <taxas>"],
        ]
        table = _plans_table(rows, _build_styles(), 475)

        value_cell = table._cellvalues[1][3]
        self.assertIsInstance(value_cell, Paragraph)
        self.assertEqual(value_cell.getPlainText(), "R$1.200,00 /por mês & <taxas>")
        _, height = value_cell.wrap(475 * 0.25, 1000)
        self.assertGreater(height, value_cell.style.leading)

    def test_validity_is_last_day_of_month(self):
        self.assertEqual(last_day_of_month_label("Abril", 2025), "30 de Abril de 2025")
        self.assertEqual(last_day_of_month_label("Fevereiro", 2024), "29 de Fevereiro de 2024")
        self.assertEqual(last_day_of_month_label("Fevereiro", 2023), "28 de Fevereiro de 2023")
        self.assertEqual(last_day_of_month_label("Março", 2025), "31 de Março de 2025")

    def test_unknown_month_passes_through(self):
        self.assertEqual(last_day_of_month_label("Smarch", 2025), "Smarch")

    def test_table_rows_follow_plan_order(self):
        submission = self._submission(
            plans=(
                ProposalPlan("a", "10 SEG", "ITAMARAJÚ/BA - PRAÇA CASTELO BRANCO", "30 dias", "R$ 1.650,00"),
                ProposalPlan("b", "30 SEG", "EUNÁPOLIS/BA - BR367", "6 meses", "R$ 99"),
            )
        )
        rows = proposal_table_rows(submission)
        self.assertEqual(rows[0], ["DURAÇÃO DO VÍDEO", "LOCAL", "TEMPO DE CONTRATO", "VALOR"])
        self.assertEqual(
            rows[1:],
            [
                ["10 SEG", "ITAMARAJÚ/BA - PRAÇA CASTELO BRANCO", "30 dias", "R$ 1.650,00"],
                ["30 SEG", "EUNÁPOLIS/BA - BR367", "6 meses", "R$ 99,00"],
            ],
        )

    def test_end_to_end_document(self):
        submission = _complete_model().submit(now=datetime(2025, 7, 4, 9, 5, 3))

        self.assertEqual(proposal_table_rows(submission)[1][3], "R$ 1.200,00")
        document = build_proposal_pdf(submission, year=2025)

        self.assertTrue(document.content.startswith(b"%PDF-"))
        self.assertEqual(document.page_count, 5)

    def test_render_is_deterministic(self):
        submission = self._submission(client=_client_record(street="RUA A", number="1"))
        first = build_proposal_pdf(submission, year=2025)
        second = build_proposal_pdf(submission, year=2025)
        self.assertEqual(first.content, second.content)
        self.assertEqual(first.page_count, 5)

    def test_logo_is_optional_and_bad_logos_are_ignored(self):
        submission = self._submission()
        with_logo = build_proposal_pdf(submission, year=2025, logo_bytes=_png_bytes())
        broken_logo = build_proposal_pdf(submission, year=2025, logo_bytes=b"not an image")
        self.assertEqual(with_logo.page_count, 5)
        self.assertEqual(broken_logo.page_count, 5)

    def test_markup_in_user_text_is_escaped(self):
        submission = self._submission(location="<b>Itamarajú & cia")
        self.assertEqual(build_proposal_pdf(submission, year=2025).page_count, 5)


class ProposalServiceTests(SimpleTestCase):
    def test_generate_proposal_names_file(self):
        submission = _complete_model().submit()
        now = datetime(2025, 7, 4, 9, 5, 3)

        result = generate_proposal(submission, now=now)

        self.assertEqual(result.content_type, "application/pdf")
        self.assertEqual(result.filename, proposal_filename(now))
        self.assertRegex(result.filename, r"^proposta-comercial-folhita-\d+\.pdf$")
        self.assertEqual(result.page_count, 5)
        self.assertEqual(result.proposal_code, submission.proposal_code)

    def test_huge_numeric_value_still_renders(self):
        submission = _complete_model(value="1e30").submit()
        result = generate_proposal(submission)
        self.assertEqual(result.page_count, 5)
        self.assertEqual(proposal_table_rows(submission)[1][3], "R$ 1" + ".000" * 10 + ",00")

    @override_settings(FOLHITA_LOGO_PATH="")
    def test_no_logo_when_path_unset(self):
        self.assertIsNone(_logo_bytes())

    def test_logo_is_read_from_configured_path(self):
        with tempfile.NamedTemporaryFile(suffix=".png") as logo:
            logo.write(_png_bytes())
            logo.flush()
            with override_settings(FOLHITA_LOGO_PATH=logo.name):
                self.assertEqual(_logo_bytes(), _png_bytes())

    @override_settings(FOLHITA_LOGO_PATH="/nonexistent/folhita-logo.png")
    def test_missing_logo_file_is_skipped(self):
        with self.assertLogs("catalogo.views", "WARNING"):
            self.assertIsNone(_logo_bytes())

    def test_unexpected_render_error_becomes_render_failure(self):
        submission = _complete_model().submit()
        with mock.patch(
            "catalogo.services.proposal_service.build_proposal_pdf", side_effect=RuntimeError("boom")
        ):
            with self.assertRaises(RenderFailure):
                generate_proposal(submission)


class DocumentCacheTests(SimpleTestCase):
    def test_replace_releases_previous_document_once(self):
        cache = DocumentCache()
        first = cache.save(b"%PDF-1", "application/pdf", "a.pdf")

        with mock.patch.object(cache, "release", wraps=cache.release) as release:
            second = cache.replace(first, b"%PDF-2", "application/pdf", "b.pdf")

        release.assert_called_once_with(first)
        self.assertNotIn(first, cache)
        self.assertEqual(cache.get(second), (b"%PDF-2", "application/pdf", "b.pdf"))
        self.assertEqual(len(cache), 1)

    def test_replace_without_previous_document(self):
        cache = DocumentCache()
        with mock.patch.object(cache, "release") as release:
            cache.replace(None, b"%PDF-1", "application/pdf", "a.pdf")
        release.assert_not_called()


class ProposalCatalogViewTests(TestCase):
    def setUp(self):
        self.url = reverse("proposal_catalog")

    def _messages(self, response):
        return [str(message) for message in response.context["messages"]]

    def _set_session(self, **values):
        session = self.client.session
        session.update(values)
        session.save()

    def _plan_ids(self):
        return [plan["id"] for plan in self.client.session["proposal_form"]["plans"]]

    def _complete_post(self, action="generate"):
        self.client.get(self.url)
        plan_id = self._plan_ids()[0]
        return self.client.post(
            self.url,
            {
                "valid_until": "Julho",
                f"{plan_id}-duration": "15 SEG",
                f"{plan_id}-location": "EUNÁPOLIS/BA - BR101",
                f"{plan_id}-contract_time": "12 meses",
                f"{plan_id}-value": "1200",
                "action": action,
            },
        )

    def test_get_renders_form_with_one_plan(self):
        response = self.client.get(self.url)
        self.assertEqual(response.status_code, 200)
        self.assertContains(response, "Gerador de Catálogo")
        self.assertContains(response, "Plano 1")
        self.assertNotContains(response, "Plano 2")
        self.assertEqual(len(self._plan_ids()), 1)

    def test_plan_ids_are_stable_between_requests(self):
        self.client.get(self.url)
        first = self._plan_ids()
        self.client.get(self.url)
        self.assertEqual(self._plan_ids(), first)

    def test_add_and_remove_plan(self):
        self.client.get(self.url)
        self.client.post(self.url, {"action": "add_plan"})
        ids = self._plan_ids()
        self.assertEqual(len(ids), 2)

        response = self.client.post(self.url, {"action": f"remove_plan:{ids[0]}"})
        self.assertEqual(self._plan_ids(), ids[1:])
        self.assertEqual(self._messages(response), [])

    def test_removing_last_plan_warns(self):
        self.client.get(self.url)
        plan_id = self._plan_ids()[0]

        response = self.client.post(self.url, {"action": f"remove_plan:{plan_id}"})

        self.assertEqual(self._messages(response), ["Você deve ter pelo menos um plano"])
        self.assertEqual(self._plan_ids(), [plan_id])

    def test_edits_are_kept_without_validation(self):
        self.client.get(self.url)
        plan_id = self._plan_ids()[0]
        self.client.post(self.url, {f"{plan_id}-value": "sob consulta", f"{plan_id}-duration": "45 SEG"})

        plan = self.client.session["proposal_form"]["plans"][0]
        self.assertEqual(plan["value"], "sob consulta")
        self.assertEqual(plan["duration"], "45 SEG")

    def test_generate_without_validity_reports_error(self):
        self.client.get(self.url)
        response = self.client.post(self.url, {"action": "generate"})
        self.assertEqual(self._messages(response), ["Selecione o mês de validade"])
        self.assertNotIn("document_token", self.client.session)

    def test_generate_with_incomplete_plan_reports_error(self):
        self.client.get(self.url)
        response = self.client.post(self.url, {"valid_until": "Maio", "action": "generate"})
        self.assertEqual(self._messages(response), ["Preencha todos os campos dos planos"])

    def test_generate_preview_and_download(self):
        response = self._complete_post()

        messages = self._messages(response)
        self.assertEqual(len(messages), 1)
        self.assertTrue(messages[0].startswith("PDF gerado com sucesso! Código: FCV"))
        token = self.client.session["document_token"]
        self.assertEqual(self.client.session["document_info"]["page_count"], 5)
        self.assertFalse(self.client.session["is_generating"])

        preview = self.client.get(reverse("preview_pdf", kwargs={"token": token}))
        self.assertEqual(preview.status_code, 200)
        self.assertEqual(preview["Content-Type"], "application/pdf")
        self.assertTrue(preview["Content-Disposition"].startswith("inline;"))
        self.assertTrue(preview.content.startswith(b"%PDF-"))

        download = self.client.get(reverse("download_file", kwargs={"token": token}))
        self.assertEqual(download.status_code, 200)
        self.assertRegex(
            download["Content-Disposition"],
            r'^attachment; filename="proposta-comercial-folhita-\d+\.pdf"$',
        )

    def test_regenerating_releases_previous_document(self):
        self._complete_post()
        first_token = self.client.session["document_token"]

        with mock.patch.object(document_cache, "release", wraps=document_cache.release) as release:
            self.client.post(self.url, {"action": "generate"})

        release.assert_called_once_with(first_token)
        second_token = self.client.session["document_token"]
        self.assertNotEqual(first_token, second_token)
        missing = self.client.get(reverse("preview_pdf", kwargs={"token": first_token}))
        self.assertEqual(missing.status_code, 404)

    def test_render_failure_is_reported(self):
        with mock.patch(
            "catalogo.services.proposal_service.build_proposal_pdf", side_effect=RuntimeError("boom")
        ):
            response = self._complete_post()
        self.assertEqual(self._messages(response), ["Erro ao gerar PDF. Tente novamente."])
        self.assertNotIn("document_token", self.client.session)
        self.assertFalse(self.client.session["is_generating"])

    def test_generate_is_refused_while_a_render_is_outstanding(self):
        self.client.get(self.url)
        self._set_session(is_generating=time.time())

        with mock.patch("catalogo.services.proposal_service.build_proposal_pdf") as build:
            response = self._complete_post()

        build.assert_not_called()
        self.assertEqual(self._messages(response), ["Aguarde a conclusão da operação em andamento."])
        self.assertNotIn("document_token", self.client.session)

    def test_render_flag_is_saved_before_rendering(self):
        seen = []

        def recording_build(*args, **kwargs):
            seen.append(self.client.session.get("is_generating"))
            return build_proposal_pdf(*args, **kwargs)

        with mock.patch(
            "catalogo.services.proposal_service.build_proposal_pdf", side_effect=recording_build
        ):
            self._complete_post()

        self.assertEqual(len(seen), 1)
        self.assertIsNotNone(seen[0])
        self.assertIsNone(self.client.session["is_generating"])

    def test_abandoned_render_flag_does_not_block(self):
        self.client.get(self.url)
        self._set_session(is_generating=time.time() - 3600)

        with self.assertLogs("catalogo.views", "WARNING"):
            response = self._complete_post()

        self.assertTrue(self._messages(response)[0].startswith("PDF gerado com sucesso!"))
        self.assertIn("document_token", self.client.session)
        self.assertIsNone(self.client.session["is_generating"])

    def test_lookup_flag_is_saved_before_calling_registry(self):
        self.client.get(self.url)
        seen = []

        def registry_call(*args, **kwargs):
            stored = ProposalFormModel.from_dict(self.client.session["proposal_form"])
            seen.append(stored.lookup_in_progress)
            return _registry_response()

        with mock.patch(REQUESTS_GET, side_effect=registry_call):
            self.client.post(self.url, {"action": "lookup", "tax_id": "11222333000181"})

        self.assertEqual(seen, [True])
        self.assertIsNone(self.client.session["proposal_form"]["lookup_started_at"])

    def test_lookup_is_refused_while_another_is_outstanding(self):
        self.client.get(self.url)
        form = self.client.session["proposal_form"]
        form["lookup_started_at"] = time.time()
        self._set_session(proposal_form=form)

        with mock.patch(REQUESTS_GET) as get:
            response = self.client.post(self.url, {"action": "lookup", "tax_id": "11222333000181"})

        get.assert_not_called()
        self.assertEqual(self._messages(response), ["Aguarde a conclusão da operação em andamento."])
        self.assertContains(response, 'value="lookup" disabled')

    def test_abandoned_lookup_flag_does_not_block(self):
        self.client.get(self.url)
        form = self.client.session["proposal_form"]
        form["lookup_started_at"] = time.time() - 3600
        self._set_session(proposal_form=form)

        with mock.patch(REQUESTS_GET, return_value=_registry_response()):
            response = self.client.post(self.url, {"action": "lookup", "tax_id": "11222333000181"})

        self.assertEqual(self._messages(response), ["Empresa encontrada: Folhita"])
        self.assertIsNone(self.client.session["proposal_form"]["lookup_started_at"])

    def test_lookup_success_stores_client(self):
        self.client.get(self.url)
        with mock.patch(REQUESTS_GET, return_value=_registry_response()):
            response = self.client.post(self.url, {"action": "lookup", "tax_id": "11.222.333/0001-81"})

        self.assertEqual(self._messages(response), ["Empresa encontrada: Folhita"])
        client = self.client.session["proposal_form"]["client"]
        self.assertEqual(client["tax_id"], "11.222.333/0001-81")
        self.assertIsNone(self.client.session["proposal_form"]["lookup_started_at"])
        self.assertContains(response, "FOLHITA COMUNICACAO VISUAL LTDA")

    def test_lookup_with_bad_identifier_skips_network(self):
        self.client.get(self.url)
        with mock.patch(REQUESTS_GET) as get:
            response = self.client.post(self.url, {"action": "lookup", "tax_id": "123"})

        get.assert_not_called()
        self.assertEqual(self._messages(response), ["CNPJ inválido. Informe os 14 dígitos."])
        self.assertIsNone(self.client.session["proposal_form"]["client"])

    def test_failed_lookup_keeps_existing_client(self):
        self.client.get(self.url)
        with mock.patch(REQUESTS_GET, return_value=_registry_response()):
            self.client.post(self.url, {"action": "lookup", "tax_id": "11222333000181"})
        before = self.client.session["proposal_form"]["client"]

        with mock.patch(REQUESTS_GET, side_effect=requests.Timeout("slow")):
            response = self.client.post(self.url, {"action": "lookup", "tax_id": "99888777000166"})

        self.assertEqual(self._messages(response), ["Não foi possível consultar o CNPJ. Tente novamente."])
        self.assertEqual(self.client.session["proposal_form"]["client"], before)

    def test_mask_endpoint_formats_complete_identifier(self):
        response = self.client.get(reverse("mask_tax_id"), {"tax_id": "11222333000181"})
        self.assertEqual(response.json(), {"tax_id": "11.222.333/0001-81"})
        partial = self.client.get(reverse("mask_tax_id"), {"tax_id": "11.222"})
        self.assertEqual(partial.json(), {"tax_id": "11222"})

    def test_unknown_token_returns_404(self):
        self.assertEqual(self.client.get(reverse("download_file", kwargs={"token": "nope"})).status_code, 404)
