"""
@file models.py
@brief Modelli dominio (contratti JSON) tramite Pydantic.
@ingroup domain_module

@details
Definisce i contratti scambiati tra i layer della pipeline di acquisizione:
- ExtractedText: output del motore OCR/PDF
- ParsedReceiptFields: campi strutturati derivati dal testo
- CodePayload: contenuto del QR code (può essere vuoto)
- IdentityResolution: utente/negozio risolti
- IntakeRecord: record persistito con il suo stato
"""

from __future__ import annotations
from datetime import datetime as _dt
from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, Field

NOT_FOUND = "Not Found"


class IntakeStatus(str, Enum):
    """@brief Stati del record: provisional (iniziale), final e rejected (terminali)."""
    PROVISIONAL = "provisional"
    FINAL = "final"
    REJECTED = "rejected"


class PaymentMethod(str, Enum):
    CARD = "card"
    CASH = "cash"
    PIX = "pix"
    BOLETO = "boleto"
    BANK_TRANSFER = "bank_transfer"
    UNKNOWN = "unknown"


class ExtractedText(BaseModel):
    """@brief Testo grezzo estratto e confidenza normalizzata in [0,1]."""
    text: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    duration_ms: int = 0
    method: str = "ocr"


class ParsedReceiptFields(BaseModel):
    """
    @brief Campi strutturati dello scontrino.
    @details
    Sempre popolato: i campi non trovati restano al default ("Not Found" / 0).
    """
    invoice_number: str = NOT_FOUND
    store_name: str = NOT_FOUND
    amount: float = 0.0
    currency: str = "UNKNOWN"
    date: Optional[_dt] = None
    payment_method: PaymentMethod = PaymentMethod.UNKNOWN
    customer_name: str = NOT_FOUND
    liters: float = 0.0
    phone_number: str = NOT_FOUND
    email: str = NOT_FOUND
    cashback_amount: float = 0.0
    confidence: float = Field(default=0.1, ge=0.0, le=1.0)


class CodePayload(BaseModel):
    """@brief Dati decodificati dal QR code; success=False se non trovato."""
    receipt_id: Optional[str] = None
    store_number: Optional[str] = None
    amount: Optional[float] = None
    date: Optional[str] = None
    verification_code: Optional[str] = None
    customer_name: Optional[str] = None
    transaction_id: Optional[str] = None
    liters: Optional[float] = None
    raw_data: Optional[str] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    success: bool = False
    method: str = "none"
    error: Optional[str] = None


class IdentityResolution(BaseModel):
    """@brief Esito della cascata di risoluzione identità."""
    user_id: str
    store_id: str
    user_method: str
    store_method: str


class ReceiptAssessment(BaseModel):
    """@brief Esito del gate di plausibilità ("è davvero uno scontrino?")."""
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class ReconciliationData(BaseModel):
    """@brief Collegamento al record esterno autoritativo (impostato solo su final)."""
    purchase_entry_id: Optional[str] = None
    online_purchase_id: Optional[str] = None
    matched_at: Optional[_dt] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class NewIntakeRecord(BaseModel):
    """@brief Dati necessari a creare un record in stato provisional."""
    user_id: str
    store_id: str
    invoice_number: str
    amount: float = Field(gt=0)
    date: _dt
    file_path: str
    extracted_text: ExtractedText
    parsed_fields: ParsedReceiptFields
    code_payload: CodePayload


class IntakeRecord(BaseModel):
    """
    @brief Record persistito che traccia un upload nel suo ciclo di vita.
    @details
    Mutato solo dalla decisione di riconciliazione (approve/reject).
    """
    id: int
    user_id: str
    store_id: str
    invoice_number: str
    amount: float
    date: _dt
    status: IntakeStatus = IntakeStatus.PROVISIONAL
    file_path: str
    extracted_text: ExtractedText = Field(default_factory=ExtractedText)
    parsed_fields: ParsedReceiptFields = Field(default_factory=ParsedReceiptFields)
    code_payload: CodePayload = Field(default_factory=CodePayload)
    reconciliation: Optional[ReconciliationData] = None
    points_awarded: int = 0
    cashback_awarded: float = 0.0
    rejection_reason: str = ""
    processed_by: Optional[str] = None
    processed_at: Optional[_dt] = None
    created_at: _dt
    updated_at: _dt


class Rewards(BaseModel):
    points: int
    cashback: float


class UploadResult(BaseModel):
    """@brief Risposta dell'operazione di upload."""
    intake_id: int
    status: IntakeStatus = IntakeStatus.PROVISIONAL
    parsed_fields: ParsedReceiptFields
    code_payload: CodePayload
    extracted_text: ExtractedText
    identity: IdentityResolution
    warnings: List[str] = Field(default_factory=list)
