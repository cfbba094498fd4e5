from __future__ import annotations


class ProposalError(Exception):
    """Recoverable condition reported to the user as a single message."""

    default_message = "Não foi possível concluir a operação."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidIdentifier(ProposalError):
    default_message = "CNPJ inválido. Informe os 14 dígitos."


class LookupFailed(ProposalError):
    default_message = "Não foi possível consultar o CNPJ. Tente novamente."


class MissingValidity(ProposalError):
    default_message = "Selecione o mês de validade"


class IncompletePlan(ProposalError):
    default_message = "Preencha todos os campos dos planos"


class RenderFailure(ProposalError):
    default_message = "Erro ao gerar PDF. Tente novamente."


class OperationInProgress(ProposalError):
    default_message = "Aguarde a conclusão da operação em andamento."
