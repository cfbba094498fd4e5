from __future__ import annotations

import logging
import re

import requests
from django.conf import settings

from ..exceptions import InvalidIdentifier, LookupFailed
from ..records import ClientRecord

logger = logging.getLogger(__name__)

TAX_ID_LENGTH = 14


def clean_tax_id(raw: str) -> str:
    return re.sub(r"\D", "", raw or "")


def format_tax_id(raw: str) -> str:
    """
    Apply the XX.XXX.XXX/XXXX-XX mask to a 14-digit CNPJ.

    Anything else is returned untouched so a partially typed value can be
    echoed back while the user is still typing.
    """
    if not re.fullmatch(r"\d{14}", raw or ""):
        return raw
    return f"{raw[:2]}.{raw[2:5]}.{raw[5:8]}/{raw[8:12]}-{raw[12:]}"


def _text(payload: dict, key: str) -> str:
    value = payload.get(key)
    if value is None:
        return ""
    return str(value).strip()


def _to_client_record(digits: str, payload: dict) -> ClientRecord:
    legal_name = _text(payload, "razao_social")
    return ClientRecord(
        tax_id=format_tax_id(digits),
        legal_name=legal_name,
        trade_name=_text(payload, "nome_fantasia") or legal_name,
        email=_text(payload, "email"),
        phone=_text(payload, "ddd_telefone_1"),
        street=_text(payload, "logradouro"),
        number=_text(payload, "numero"),
        district=_text(payload, "bairro"),
        city=_text(payload, "municipio"),
        state=_text(payload, "uf"),
        postal_code=_text(payload, "cep"),
    )


def lookup_by_tax_id(raw: str) -> ClientRecord:
    digits = clean_tax_id(raw)
    if len(digits) != TAX_ID_LENGTH:
        raise InvalidIdentifier()

    url = settings.CNPJ_LOOKUP_URL.format(cnpj=digits)
    logger.info("Looking up CNPJ %s", format_tax_id(digits))
    try:
        response = requests.get(url, timeout=settings.CNPJ_LOOKUP_TIMEOUT)
        response.raise_for_status()
        payload = response.json()
    except requests.RequestException as exc:
        logger.warning("CNPJ lookup for %s failed: %s", digits, exc)
        raise LookupFailed() from exc
    except ValueError as exc:
        logger.warning("CNPJ lookup for %s returned invalid JSON", digits)
        raise LookupFailed() from exc

    if not isinstance(payload, dict):
        logger.warning("CNPJ lookup for %s returned unexpected payload", digits)
        raise LookupFailed()
    return _to_client_record(digits, payload)
