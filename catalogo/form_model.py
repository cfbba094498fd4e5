from __future__ import annotations

import logging
import time
from dataclasses import replace
from datetime import datetime
from typing import Callable

from .exceptions import IncompletePlan, MissingValidity, OperationInProgress
from .records import (
    DEFAULT_LOCATION_DISPLAY,
    LOCATION_DISPLAY,
    PLAN_FIELDS,
    ClientRecord,
    PlanLineItem,
    ProposalPlan,
    ProposalSubmission,
)
from .services.cnpj_service import lookup_by_tax_id

logger = logging.getLogger(__name__)

PROPOSAL_CODE_PREFIX = "FCV"
CURRENCY_MARKER = "R$"
LOOKUP_STALE_AFTER = 15.0  # seconds


def generate_proposal_code(now: datetime | None = None) -> str:
    now = now or datetime.now()
    return now.strftime(f"{PROPOSAL_CODE_PREFIX}%y%m%d%H%M%S")


def extract_location(full_location: str) -> str:
    return LOCATION_DISPLAY.get(full_location, DEFAULT_LOCATION_DISPLAY)


def format_value_with_currency(value: str) -> str:
    if value.strip().startswith(CURRENCY_MARKER):
        return value
    return f"{CURRENCY_MARKER} {value}"


class ProposalFormModel:
    """
    Editable state of a sales proposal.

    Plans are only reachable through the narrow mutation methods below so the
    "at least one plan" rule cannot be bypassed. Nothing here validates at
    write time; `submit` is the single validation point.
    """

    def __init__(
        self,
        valid_until: str = "",
        plans: list[PlanLineItem] | None = None,
        client: ClientRecord | None = None,
        lookup_started_at: float | None = None,
        stale_after: float = LOOKUP_STALE_AFTER,
    ):
        self.valid_until = valid_until
        self._plans = list(plans) if plans else [PlanLineItem()]
        self.client = client
        self.lookup_started_at = lookup_started_at
        self.stale_after = stale_after

    @property
    def plans(self) -> tuple[PlanLineItem, ...]:
        return tuple(replace(plan) for plan in self._plans)

    def _find(self, plan_id: str) -> PlanLineItem | None:
        for plan in self._plans:
            if plan.id == plan_id:
                return plan
        return None

    def set_valid_until(self, month: str) -> None:
        self.valid_until = month or ""

    def add_plan(self) -> PlanLineItem:
        plan = PlanLineItem()
        self._plans.append(plan)
        return replace(plan)

    def remove_plan(self, plan_id: str) -> bool:
        """Return False when the removal is rejected because one plan is left."""
        if len(self._plans) <= 1:
            logger.debug("Refusing to remove the last plan %s", plan_id)
            return False
        plan = self._find(plan_id)
        if plan is not None:
            self._plans.remove(plan)
        return True

    def update_field(self, plan_id: str, field: str, value: str) -> bool:
        if field not in PLAN_FIELDS:
            raise ValueError(f"Unknown plan field: {field}")
        plan = self._find(plan_id)
        if plan is None:
            return False
        setattr(plan, field, value)
        return True

    def lookup_busy(self, now: float | None = None) -> bool:
        """
        Whether a lookup started less than `stale_after` seconds ago.

        A flag older than that belongs to a request that never finished (a
        killed worker, or a concurrent request that saved the session over
        the cleared flag), so it no longer blocks.
        """
        if self.lookup_started_at is None:
            return False
        now = time.time() if now is None else now
        return now - self.lookup_started_at < self.stale_after

    @property
    def lookup_in_progress(self) -> bool:
        return self.lookup_busy()

    def begin_lookup(self, now: float | None = None) -> None:
        now = time.time() if now is None else now
        if self.lookup_busy(now):
            raise OperationInProgress()
        if self.lookup_started_at is not None:
            logger.warning("Clearing stale lookup flag set at %s", self.lookup_started_at)
        self.lookup_started_at = now

    def end_lookup(self, record: ClientRecord | None = None) -> None:
        # A failed lookup leaves the previous client untouched.
        self.lookup_started_at = None
        if record is not None:
            self.client = record

    def lookup_client(
        self, raw_tax_id: str, lookup: Callable[[str], ClientRecord] = lookup_by_tax_id
    ) -> ClientRecord:
        self.begin_lookup()
        try:
            record = lookup(raw_tax_id)
        except Exception:
            self.end_lookup()
            raise
        self.end_lookup(record)
        return record

    def submit(self, now: datetime | None = None) -> ProposalSubmission:
        if not self.valid_until:
            raise MissingValidity()
        if any(not plan.is_complete() for plan in self._plans):
            raise IncompletePlan()

        proposal_code = generate_proposal_code(now)
        location = extract_location(self._plans[0].location)
        plans = tuple(
            ProposalPlan(
                id=plan.id,
                duration=plan.duration,
                location=plan.location,
                contract_time=plan.contract_time,
                value=format_value_with_currency(plan.value),
            )
            for plan in self._plans
        )
        logger.info("Proposal %s submitted with %d plan(s)", proposal_code, len(plans))
        return ProposalSubmission(
            valid_until=self.valid_until,
            plans=plans,
            proposal_code=proposal_code,
            location=location,
            client=self.client,
        )

    def to_dict(self) -> dict:
        return {
            "valid_until": self.valid_until,
            "plans": [plan.to_dict() for plan in self._plans],
            "client": self.client.to_dict() if self.client else None,
            "lookup_started_at": self.lookup_started_at,
        }

    @classmethod
    def from_dict(
        cls, data: dict | None, stale_after: float = LOOKUP_STALE_AFTER
    ) -> "ProposalFormModel":
        if not data:
            return cls(stale_after=stale_after)
        plans = [PlanLineItem(**plan) for plan in data.get("plans") or []]
        client_data = data.get("client")
        return cls(
            valid_until=data.get("valid_until") or "",
            plans=plans,
            client=ClientRecord(**client_data) if client_data else None,
            lookup_started_at=data.get("lookup_started_at"),
            stale_after=stale_after,
        )
