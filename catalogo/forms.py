from __future__ import annotations

from django import forms

from .records import CONTRACT_TERMS, DURATIONS, LOCATIONS, MONTHS

MONTH_CHOICES = [("", "Selecione o mês")] + [(month, month) for month in MONTHS]
DURATION_CHOICES = [(duration, duration) for duration in DURATIONS]
LOCATION_CHOICES = [("", "Selecione o local")] + list(LOCATIONS.items())
CONTRACT_TERM_CHOICES = [(term, term) for term in CONTRACT_TERMS]


class ProposalForm(forms.Form):
    valid_until = forms.CharField(
        label="Orçamento válido até",
        required=False,
        widget=forms.Select(choices=MONTH_CHOICES, attrs={"class": "form-input"}),
    )


class PlanForm(forms.Form):
    """
    One row of the plans table, bound with the plan id as prefix.

    Plain CharFields on purpose: edits are stored as typed and only checked
    when the proposal is generated.
    """

    duration = forms.CharField(
        label="Duração do vídeo",
        required=False,
        widget=forms.Select(choices=DURATION_CHOICES, attrs={"class": "form-input"}),
    )
    location = forms.CharField(
        label="Local",
        required=False,
        widget=forms.Select(choices=LOCATION_CHOICES, attrs={"class": "form-input"}),
    )
    contract_time = forms.CharField(
        label="Tempo de contrato",
        required=False,
        widget=forms.Select(choices=CONTRACT_TERM_CHOICES, attrs={"class": "form-input"}),
    )
    value = forms.CharField(
        label="Valor",
        required=False,
        strip=False,
        widget=forms.TextInput(
            attrs={"placeholder": "Ex: R$1.650,00 ou R$1.200,00 /por mês", "class": "form-input"}
        ),
    )


class TaxIdLookupForm(forms.Form):
    tax_id = forms.CharField(
        label="CNPJ",
        required=False,
        widget=forms.TextInput(attrs={"placeholder": "00.000.000/0000-00", "class": "form-input"}),
    )

