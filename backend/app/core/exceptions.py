"""
Eccezioni Custom per l'applicazione.
Progetto: Gestionale Edile (Preventivi e Commesse)

Definisce eccezioni specifiche del dominio per una gestione
centralizzata degli errori.

NOTA: BusinessValidationError è volutamente distinta da pydantic.ValidationError.
- pydantic.ValidationError: errori di formato/tipo nei dati di input
- BusinessValidationError: violazioni delle regole di business logic

Tutte le eccezioni sono recuperabili dal chiamante, tranne
PartialConversionError che richiede una riconciliazione manuale.
"""

from typing import Any, Dict, List, Optional

__all__ = [
    "AppException",
    "NotFoundError",
    "ConflictError",
    "StorageError",
    "BusinessValidationError",
    "QuoteValidationError",
    "ValidationError",       # alias di QuoteValidationError
    "InvalidTransitionError",
    "ConversionNotAllowedError",
    "InvalidInputError",
    "PartialConversionError",
]


class AppException(Exception):
    """
    Base exception per l'applicazione.

    Tutte le eccezioni custom ereditano da questa classe base.

    Attributes:
        error_code: Identificativo univoco dell'errore per il chiamante
        detail: Messaggio di errore leggibile per l'utente
        extra: Dizionario con dati aggiuntivi
    """

    error_code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        detail: str,
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.detail = detail
        self.error_code = error_code if error_code is not None else self.error_code
        self.extra = extra
        super().__init__(detail)


class NotFoundError(AppException):
    """
    Eccezione sollevata quando una risorsa non viene trovata.

    Utilizzata per preventivi o analisi di redditività inesistenti.
    """

    error_code: str = "RESOURCE_NOT_FOUND"

    def __init__(
        self,
        detail: str = "Risorsa non trovata",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class ConflictError(AppException):
    """
    Eccezione sollevata per conflitti di stato.

    Esempi di utilizzo:
        - "Limite numerazione preventivi raggiunto per l'anno 2025"
        - "Campo non modificabile: number"
    """

    error_code: str = "CONFLICT_STATE"

    def __init__(
        self,
        detail: str = "Conflitto di stato",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class StorageError(AppException):
    """Errore di lettura/scrittura sull'archivio persistente."""

    error_code: str = "STORAGE_ERROR"

    def __init__(
        self,
        detail: str = "Errore di accesso all'archivio",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class BusinessValidationError(ValueError, AppException):
    """
    Eccezione sollevata per violazioni delle regole di business logic.

    Eredita da ValueError per essere catturata dai validatori Pydantic.

    Esempi di utilizzo:
        - "Solo preventivi in bozza possono essere modificati"
        - "Non è possibile eliminare un preventivo in stato 'converted'"
    """

    error_code: str = "BUSINESS_VALIDATION_ERROR"

    def __init__(
        self,
        detail: str = "Validazione dati fallita",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        # Chiama AppException.__init__ direttamente per evitare ValueError
        AppException.__init__(self, detail, error_code, extra)


class QuoteValidationError(BusinessValidationError):
    """
    Il preventivo non supera i controlli strutturali/numerici.

    Porta con sé la lista completa degli errori (bloccanti) e
    degli avvisi (non bloccanti) prodotta dal validatore.
    """

    error_code: str = "QUOTE_VALIDATION_ERROR"

    def __init__(
        self,
        errors: List[str],
        warnings: Optional[List[str]] = None,
        detail: Optional[str] = None,
    ) -> None:
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        message = detail or "Preventivo non valido: " + "; ".join(self.errors)
        super().__init__(
            message,
            extra={"errors": self.errors, "warnings": self.warnings},
        )


# Alias per compatibilità
ValidationError = QuoteValidationError


class InvalidTransitionError(BusinessValidationError):
    """
    Transizione di stato non consentita dalla macchina a stati.

    Attributes:
        current_state: Stato attuale del preventivo
        requested_state: Stato richiesto
    """

    error_code: str = "INVALID_TRANSITION"

    def __init__(self, current_state: str, requested_state: str) -> None:
        self.current_state = current_state
        self.requested_state = requested_state
        super().__init__(
            f"Transizione da '{current_state}' a '{requested_state}' non consentita",
            extra={"current_state": current_state, "requested_state": requested_state},
        )


class ConversionNotAllowedError(BusinessValidationError):
    """Precondizioni per la conversione in commessa non soddisfatte."""

    error_code: str = "CONVERSION_NOT_ALLOWED"

    def __init__(
        self,
        detail: str = "Conversione non consentita",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class InvalidInputError(BusinessValidationError):
    """Input numerico non valido (es. quantità o prezzo negativi)."""

    error_code: str = "INVALID_INPUT"

    def __init__(
        self,
        detail: str = "Input non valido",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class PartialConversionError(AppException):
    """
    Conversione rimasta a metà: commessa e fattura esistono a valle,
    ma il preventivo non è stato marcato come convertito.

    Non recuperabile automaticamente: un operatore deve riconciliare
    a mano per evitare una doppia conversione.
    """

    error_code: str = "PARTIAL_CONVERSION"

    def __init__(self, quote_id: Any, project_id: str, invoice_id: str) -> None:
        self.quote_id = quote_id
        self.project_id = project_id
        self.invoice_id = invoice_id
        super().__init__(
            f"Conversione parziale del preventivo {quote_id}: commessa {project_id} e "
            f"fattura {invoice_id} create, ma lo stato del preventivo non è stato salvato",
            extra={
                "quote_id": str(quote_id),
                "project_id": project_id,
                "invoice_id": invoice_id,
            },
        )
