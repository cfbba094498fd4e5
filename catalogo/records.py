from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field

MONTHS = (
    "Janeiro",
    "Fevereiro",
    "Março",
    "Abril",
    "Maio",
    "Junho",
    "Julho",
    "Agosto",
    "Setembro",
    "Outubro",
    "Novembro",
    "Dezembro",
)

DURATIONS = ("10 SEG", "15 SEG", "20 SEG", "30 SEG")

CONTRACT_TERMS = ("30 dias", "6 meses", "12 meses")

# Canonical site name -> label shown in the select.
LOCATIONS = {
    "ITAMARAJÚ/BA - PRAÇA CASTELO BRANCO": "Itamarajú/BA - Praça Castelo Branco",
    "EUNÁPOLIS/BA - BR101": "Eunápolis/BA - BR101",
    "EUNÁPOLIS/BA - BR367": "Eunápolis/BA - BR367",
}

# Canonical site name -> "directed to" line on the proposal page.
LOCATION_DISPLAY = {
    "ITAMARAJÚ/BA - PRAÇA CASTELO BRANCO": "Itamarajú - BA",
    "EUNÁPOLIS/BA - BR101": "Eunápolis - BA",
    "EUNÁPOLIS/BA - BR367": "Eunápolis - BA",
}
DEFAULT_LOCATION_DISPLAY = "Itamarajú - BA"

PLAN_FIELDS = ("duration", "location", "contract_time", "value")


def _new_plan_id() -> str:
    return uuid.uuid4().hex


@dataclass
class PlanLineItem:
    id: str = field(default_factory=_new_plan_id)
    duration: str = DURATIONS[0]
    location: str = ""
    contract_time: str = CONTRACT_TERMS[0]
    value: str = ""

    def is_complete(self) -> bool:
        return bool(self.location) and bool(self.value)

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


@dataclass(frozen=True)
class ClientRecord:
    tax_id: str
    legal_name: str
    trade_name: str
    email: str = ""
    phone: str = ""
    street: str = ""
    number: str = ""
    district: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""

    @property
    def address_line(self) -> str:
        street = ", ".join(part for part in (self.street, self.number) if part)
        city = "/".join(part for part in (self.city, self.state) if part)
        parts = [street, self.district, city, self.postal_code]
        return " - ".join(part for part in parts if part)

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


@dataclass(frozen=True)
class ProposalPlan:
    """A plan line item as it was at submission time."""

    id: str
    duration: str
    location: str
    contract_time: str
    value: str


@dataclass(frozen=True)
class ProposalSubmission:
    valid_until: str
    plans: tuple[ProposalPlan, ...]
    proposal_code: str
    location: str
    client: ClientRecord | None = None


@dataclass(frozen=True)
class RenderedDocument:
    content: bytes
    page_count: int
