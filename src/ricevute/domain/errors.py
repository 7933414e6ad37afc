"""
@file errors.py
@brief Tassonomia degli errori della pipeline di acquisizione.
@ingroup domain_module

@details
Ogni errore porta un messaggio leggibile e un dizionario details con i
dati diagnostici (campi estratti, warnings, testo grezzo).
PayloadDecodeFailure è l'unico non terminale: il decoder lo registra e
prosegue con un payload vuoto.
"""

from __future__ import annotations
from typing import Any, Optional


class IntakeError(Exception):
    """@brief Base di tutti gli errori di dominio."""
    code = "intake_error"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "error": self.message, "code": self.code, "details": self.details}


class FileValidationError(IntakeError):
    """@brief Formato non supportato o file troppo grande (prima dell'OCR)."""
    code = "file_validation_error"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None, *, too_large: bool = False):
        super().__init__(message, details)
        self.too_large = too_large


class ExtractionError(IntakeError):
    """@brief Fallimento del motore di riconoscimento. Nessun retry automatico."""
    code = "extraction_error"


class PayloadDecodeFailure(IntakeError):
    """@brief QR code assente o non decodificabile (non terminale)."""
    code = "payload_decode_failure"


class ValidationError(IntakeError):
    """@brief Importo non positivo o gate di plausibilità fallito."""
    code = "validation_error"


class IdentityResolutionError(IntakeError):
    code = "identity_resolution_error"


class UserNotFound(IdentityResolutionError):
    code = "user_not_found"


class StoreNotFound(IdentityResolutionError):
    code = "store_not_found"


class PersistenceError(IntakeError):
    code = "persistence_error"


class RecordNotFound(IntakeError):
    code = "record_not_found"


class InvalidStateTransition(IntakeError):
    """@brief Transizione tentata su un record già in stato terminale."""
    code = "invalid_state_transition"
