from __future__ import annotations

import calendar
import logging
import re
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext
from io import BytesIO
from xml.sax.saxutils import escape

from PIL import Image as PilImage
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_LEFT, TA_RIGHT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.utils import ImageReader
from reportlab.platypus import (
    BaseDocTemplate,
    Frame,
    NextPageTemplate,
    PageBreak,
    PageTemplate,
    Paragraph,
    Spacer,
    Table,
    TableStyle,
)

from .records import MONTHS, ProposalSubmission, RenderedDocument

logger = logging.getLogger(__name__)

DARK_BG = colors.HexColor("#0f1820")
BRAND_GREEN = colors.HexColor("#00ff41")
BRAND_CYAN = colors.HexColor("#00ffff")
PROPOSAL_BLUE = colors.HexColor("#0088aa")

PAGE_PADDING = 60  # points, on every page

TABLE_HEADERS = ["DURAÇÃO DO VÍDEO", "LOCAL", "TEMPO DE CONTRATO", "VALOR"]
PAYMENT_METHODS = "PIX (SEM JUROS) | CARTÃO DE CRÉDITO (COM JUROS) | BOLETO (3,5% TAXA)"
CONTACT_NUMBER = "73 9982-7391"

ADVANTAGES = [
    "<b>10 mil pessoas</b> alcançadas por dia",
    "Exibição da sua marca <b>262 por dia</b>",
    "<b>Locais estratégicos</b>",
    "Fortalecimento da sua marca",
    "Aumento da sua taxa de vendas",
]


def _format_brl(amount: Decimal) -> str:
    # Room for every integer digit plus the two decimals.
    with localcontext() as ctx:
        if amount.adjusted() > ctx.Emax:
            raise InvalidOperation(f"{amount} is out of range")
        ctx.prec = max(ctx.prec, amount.adjusted() + 3)
        quantized = amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        us_style = f"{quantized:,.2f}"
    return "R$ " + us_style.translate(str.maketrans({",": ".", ".": ","}))


def _parse_decimal(text: str) -> Decimal | None:
    try:
        number = Decimal(text)
    except InvalidOperation:
        return None
    return number if number.is_finite() else None


def format_currency(value: str) -> str:
    """
    Format a plan price for the proposal table as ``R$ 1.234,56``.

    Values carrying a ``.`` or ``,`` are read the pt-BR way (``.`` groups
    thousands, ``,`` marks decimals). Anything that does not parse is
    returned exactly as given.
    """
    clean_value = re.sub(r"R\$|\s", "", value)

    candidates = [clean_value]
    if "," in clean_value or "." in clean_value:
        candidates.insert(0, clean_value.replace(".", "").replace(",", ".", 1))

    for candidate in candidates:
        number = _parse_decimal(candidate)
        if number is None:
            continue
        try:
            return _format_brl(number)
        except InvalidOperation:
            logger.debug("Cannot format %r as currency", value)
    return value


def last_day_of_month_label(month_name: str, year: int | None = None) -> str:
    year = year or date.today().year
    if month_name not in MONTHS:
        return month_name
    month_index = MONTHS.index(month_name) + 1
    last_day = calendar.monthrange(year, month_index)[1]
    return f"{last_day} de {month_name} de {year}"


def proposal_table_rows(submission: ProposalSubmission) -> list[list[str]]:
    rows = [list(TABLE_HEADERS)]
    for plan in submission.plans:
        rows.append([plan.duration, plan.location, plan.contract_time, format_currency(plan.value)])
    return rows


def _build_styles() -> dict[str, ParagraphStyle]:
    styles = getSampleStyleSheet()
    base = ParagraphStyle(
        "FolhitaBase",
        parent=styles["Normal"],
        fontName="Helvetica",
        fontSize=13,
        leading=23,
        textColor=colors.white,
    )
    return {
        "about_title": ParagraphStyle(
            "AboutTitle", parent=base, fontName="Helvetica-Bold", fontSize=56,
            leading=64, textColor=BRAND_GREEN, spaceAfter=30,
        ),
        "about_text": ParagraphStyle(
            "AboutText", parent=base, spaceAfter=20, rightIndent=140,
        ),
        "about_tagline": ParagraphStyle(
            "AboutTagline", parent=base, fontName="Helvetica-Bold", fontSize=16,
            leading=20, spaceBefore=40,
        ),
        "advantages_title": ParagraphStyle(
            "AdvantagesTitle", parent=base, fontName="Helvetica-Bold", fontSize=32,
            leading=42, spaceAfter=40,
        ),
        "advantage": ParagraphStyle("Advantage", parent=base, leading=16),
        "proposal_title": ParagraphStyle(
            "ProposalTitle", parent=base, fontName="Helvetica-Bold", fontSize=32,
            leading=38, textColor=PROPOSAL_BLUE, spaceAfter=30,
        ),
        "proposal_location": ParagraphStyle(
            "ProposalLocation", parent=base, fontSize=14, leading=22,
            textColor=colors.HexColor("#333333"),
        ),
        "proposal_client": ParagraphStyle(
            "ProposalClient", parent=base, fontSize=10, leading=14,
            textColor=colors.HexColor("#666666"),
        ),
        "validity_label": ParagraphStyle(
            "ValidityLabel", parent=base, fontSize=11, leading=14,
            textColor=colors.HexColor("#999999"), alignment=TA_RIGHT,
        ),
        "validity_date": ParagraphStyle(
            "ValidityDate", parent=base, fontName="Helvetica-Bold", fontSize=16,
            leading=20, textColor=colors.HexColor("#333333"), alignment=TA_RIGHT,
            spaceAfter=20,
        ),
        "proposal_number": ParagraphStyle(
            "ProposalNumber", parent=base, fontName="Helvetica-Bold", fontSize=10,
            leading=13, textColor=colors.HexColor("#333333"), alignment=TA_RIGHT,
        ),
        "validity_title": ParagraphStyle(
            "ValidityTitle", parent=base, fontName="Helvetica-Bold", fontSize=16,
            leading=20, textColor=colors.HexColor("#333333"), spaceBefore=20,
            spaceAfter=12,
        ),
        "table_header": ParagraphStyle(
            "TableHeader", parent=base, fontName="Helvetica-Bold", fontSize=10,
            leading=12, textColor=PROPOSAL_BLUE,
        ),
        "table_cell": ParagraphStyle(
            "TableCell", parent=base, fontSize=11, leading=15,
            textColor=colors.HexColor("#333333"), alignment=TA_LEFT,
        ),
        "table_value": ParagraphStyle(
            "TableValue", parent=base, fontName="Helvetica-Bold", fontSize=13,
            leading=16, textColor=PROPOSAL_BLUE, alignment=TA_RIGHT,
        ),
        "payment_methods": ParagraphStyle(
            "PaymentMethods", parent=base, fontSize=12, leading=16,
            textColor=colors.HexColor("#666666"), alignment=TA_CENTER,
            spaceBefore=20,
        ),
        "thanks_title": ParagraphStyle(
            "ThanksTitle", parent=base, fontName="Helvetica-Bold", fontSize=64,
            leading=72, textColor=BRAND_GREEN, alignment=TA_CENTER, spaceAfter=40,
        ),
        "thanks_text": ParagraphStyle(
            "ThanksText", parent=base, alignment=TA_CENTER, leftIndent=40,
            rightIndent=40, spaceAfter=40,
        ),
        "contact": ParagraphStyle(
            "Contact", parent=base, fontName="Helvetica-Bold", fontSize=22,
            leading=26, alignment=TA_CENTER,
        ),
        "footer": ParagraphStyle(
            "Footer", parent=base, fontSize=10, leading=14,
            textColor=colors.HexColor("#999999"), alignment=TA_CENTER, spaceBefore=20,
        ),
    }


def _load_logo(logo_bytes: bytes | None) -> ImageReader | None:
    if not logo_bytes:
        return None
    try:
        with PilImage.open(BytesIO(logo_bytes)) as img:
            img = img.convert("RGBA")
            img.thumbnail((400, 100), PilImage.LANCZOS)
            logo_buffer = BytesIO()
            img.save(logo_buffer, format="PNG")
            logo_buffer.seek(0)
            return ImageReader(logo_buffer)
    except (OSError, ValueError):
        logger.warning("Ignoring unreadable logo image")
        return None


def _boxed(content: Paragraph, width: float, border_color, radius: float = 12) -> Table:
    box = Table([[content]], colWidths=[width])
    box.setStyle(
        TableStyle(
            [
                ("BOX", (0, 0), (-1, -1), 2, border_color),
                ("ROUNDEDCORNERS", [radius, radius, radius, radius]),
                ("LEFTPADDING", (0, 0), (-1, -1), 15),
                ("RIGHTPADDING", (0, 0), (-1, -1), 15),
                ("TOPPADDING", (0, 0), (-1, -1), 12),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 12),
            ]
        )
    )
    return box


def _about_page(styles: dict[str, ParagraphStyle]) -> list:
    return [
        Paragraph("Quem somos?", styles["about_title"]),
        Paragraph(
            "<b>A Folhita Comunicação Visual</b> é especialista em visibilidade para marcas e "
            "negócios, com os <b>maiores e mais impactantes outdoors de LED da Bahia.</b> "
            "Nossa tecnologia de última geração em painéis de LED permite que sua mensagem se "
            "destaque, alcance mais pessoas e gere resultados reais. Quando se trata de "
            "comunicação visual de alto impacto, a Folhita é a escolha certa para transformar "
            "sua marca em uma referência.",
            styles["about_text"],
        ),
        Paragraph("Folhita - Visibilidade que move seu negócio!", styles["about_tagline"]),
    ]


def _advantages_page(styles: dict[str, ParagraphStyle], width: float) -> list:
    story: list = [Paragraph("Vantagens de<br/>anunciar com a gente", styles["advantages_title"])]
    for advantage in ADVANTAGES:
        story.append(_boxed(Paragraph(advantage, styles["advantage"]), width * 0.6, BRAND_CYAN, 20))
        story.append(Spacer(1, 15))
    return story


def _proposal_page(
    submission: ProposalSubmission, styles: dict[str, ParagraphStyle], width: float, year: int
) -> list:
    left_cell: list = [
        Paragraph(
            f"Direcionada para: <font name='Helvetica-Bold' size='18'>{escape(submission.location)}</font>",
            styles["proposal_location"],
        )
    ]
    client = submission.client
    if client is not None:
        left_cell.append(Spacer(1, 8))
        left_cell.append(
            Paragraph(f"<b>{escape(client.trade_name)}</b> - CNPJ {escape(client.tax_id)}", styles["proposal_client"])
        )
        if client.address_line:
            left_cell.append(Paragraph(escape(client.address_line), styles["proposal_client"]))

    right_cell = [
        Paragraph("Orçamento válido até", styles["validity_label"]),
        Paragraph(escape(last_day_of_month_label(submission.valid_until, year)), styles["validity_date"]),
        Paragraph(f"Número da proposta<br/>{escape(submission.proposal_code)}", styles["proposal_number"]),
    ]
    info_table = Table([[left_cell, right_cell]], colWidths=[width * 0.55, width * 0.45])
    info_table.setStyle(
        TableStyle(
            [
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ("LEFTPADDING", (0, 0), (-1, -1), 0),
                ("RIGHTPADDING", (0, 0), (-1, -1), 0),
            ]
        )
    )

    plans_table = _plans_table(proposal_table_rows(submission), styles, width)

    return [
        Paragraph("Proposta comercial", styles["proposal_title"]),
        info_table,
        Paragraph("Validade da proposta", styles["validity_title"]),
        plans_table,
        Paragraph(PAYMENT_METHODS, styles["payment_methods"]),
    ]


def _plans_table(rows: list[list[str]], styles: dict[str, ParagraphStyle], width: float) -> Table:
    table_data = [[Paragraph(escape(header), styles["table_header"]) for header in rows[0]]]
    for duration, location, contract_time, value in rows[1:]:
        table_data.append(
            [
                duration,
                Paragraph(escape(location), styles["table_cell"]),
                contract_time,
                Paragraph(escape(value), styles["table_value"]),
            ]
        )
    plans_table = Table(
        table_data,
        colWidths=[width * 0.15, width * 0.40, width * 0.20, width * 0.25],
        repeatRows=1,
    )
    plans_table.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#e8f4f8")),
                ("LINEBELOW", (0, 0), (-1, 0), 2, PROPOSAL_BLUE),
                ("BOX", (0, 1), (-1, -1), 0.5, colors.HexColor("#e0e0e0")),
                ("LINEBELOW", (0, 1), (-1, -1), 0.5, colors.HexColor("#e0e0e0")),
                ("FONTNAME", (0, 1), (-1, -1), "Helvetica"),
                ("FONTSIZE", (0, 1), (-1, -1), 11),
                ("TEXTCOLOR", (0, 1), (-1, -1), colors.HexColor("#333333")),
                ("FONTNAME", (0, 1), (0, -1), "Helvetica-Bold"),
                ("FONTSIZE", (0, 1), (0, -1), 13),
                ("TEXTCOLOR", (0, 1), (0, -1), PROPOSAL_BLUE),
                ("ALIGN", (3, 0), (3, -1), "RIGHT"),
                ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
                ("TOPPADDING", (0, 0), (-1, -1), 14),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 14),
            ]
        )
    )
    return plans_table


def _thanks_page(styles: dict[str, ParagraphStyle], width: float) -> list:
    contact_box = _boxed(Paragraph(CONTACT_NUMBER, styles["contact"]), width * 0.6, BRAND_GREEN, 30)
    contact_box.hAlign = "CENTER"
    return [
        Spacer(1, 120),
        Paragraph("Obrigado", styles["thanks_title"]),
        Paragraph(
            "Agradecemos imensamente por nos permitir apresentar a <b>Folhita Comunicação Visual "
            "E LED!</b> Estamos prontos para transformar sua marca com nossa comunicação de "
            "impacto, seja nos maiores outdoors de LED da Bahia ou com nossos materiais "
            "personalizados que deixam sua marca presente no dia a dia do seu público.",
            styles["thanks_text"],
        ),
        contact_box,
        Paragraph("Copyright © 2024 @folhita_cv, all rights reserved.", styles["footer"]),
    ]


def build_proposal_pdf(
    submission: ProposalSubmission,
    *,
    year: int | None = None,
    logo_bytes: bytes | None = None,
) -> RenderedDocument:
    """
    Render a submission into the five-page Folhita proposal.

    Pages: cover, about, advantages, proposal table, thanks. Output is
    byte-for-byte stable for the same submission and year.
    """
    year = year or date.today().year
    buffer = BytesIO()
    page_width, page_height = A4
    logo = _load_logo(logo_bytes)

    doc = BaseDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=PAGE_PADDING,
        rightMargin=PAGE_PADDING,
        topMargin=PAGE_PADDING,
        bottomMargin=PAGE_PADDING,
        title="Proposta comercial Folhita",
        author="Folhita Comunicação Visual",
        invariant=1,
    )
    frame = Frame(
        doc.leftMargin, doc.bottomMargin, doc.width, doc.height, id="content",
        leftPadding=0, rightPadding=0, topPadding=0, bottomPadding=0,
    )

    def _dark_background(c, d) -> None:
        c.saveState()
        c.setFillColor(DARK_BG)
        c.rect(0, 0, page_width, page_height, stroke=0, fill=1)
        c.restoreState()

    def _cover(c, d) -> None:
        _dark_background(c, d)
        c.saveState()

        # Brand diagonal
        path = c.beginPath()
        path.moveTo(0, page_height)
        path.lineTo(page_width * 0.6, page_height)
        path.lineTo(page_width * 0.25, 0)
        path.lineTo(0, 0)
        path.close()
        c.setFillColor(BRAND_GREEN)
        c.drawPath(path, stroke=0, fill=1)

        # Year badge
        badge_x = page_width - 40 - 30
        badge_y = page_height - 40 - 30
        c.setStrokeColor(BRAND_GREEN)
        c.setLineWidth(2)
        c.circle(badge_x, badge_y, 30, stroke=1, fill=0)
        c.setFillColor(colors.white)
        c.setFont("Helvetica-Bold", 18)
        c.drawCentredString(badge_x, badge_y - 6, str(year))

        right = page_width - PAGE_PADDING
        c.setFont("Helvetica-Bold", 64)
        title_top = page_height * 0.65
        c.drawRightString(right, title_top, "Proposta")
        c.drawRightString(right, title_top - 70, "comercial")

        subtitle = "FOLHITA COMUNICAÇÃO VISUAL E LED"
        c.setFont("Helvetica-Bold", 18)
        subtitle_width = c.stringWidth(subtitle, "Helvetica-Bold", 18)
        c.setStrokeColor(BRAND_CYAN)
        c.roundRect(right - subtitle_width - 50, 180, subtitle_width + 50, 44, 22, stroke=1, fill=0)
        c.drawRightString(right - 25, 196, subtitle)

        c.setFont("Helvetica-Bold", 16)
        c.drawRightString(right, 140, "O MAIOR OUTDOOR DE LED DA BAHIA")

        if logo is not None:
            c.drawImage(
                logo, right - 200, PAGE_PADDING, width=200, height=50,
                preserveAspectRatio=True, anchor="e", mask="auto",
            )
        c.restoreState()

    doc.addPageTemplates(
        [
            PageTemplate(id="cover", frames=[frame], onPage=_cover),
            PageTemplate(id="dark", frames=[frame], onPage=_dark_background),
            PageTemplate(id="light", frames=[frame]),
        ]
    )

    styles = _build_styles()
    story: list = [Spacer(1, 1), NextPageTemplate("dark"), PageBreak()]
    story.extend(_about_page(styles))
    story.append(PageBreak())
    story.extend(_advantages_page(styles, doc.width))
    story.extend([NextPageTemplate("light"), PageBreak()])
    story.extend(_proposal_page(submission, styles, doc.width, year))
    story.extend([NextPageTemplate("dark"), PageBreak()])
    story.extend(_thanks_page(styles, doc.width))

    doc.build(story)
    content = buffer.getvalue()
    buffer.close()
    logger.info("Rendered proposal %s (%d pages)", submission.proposal_code, doc.page)
    return RenderedDocument(content=content, page_count=doc.page)
