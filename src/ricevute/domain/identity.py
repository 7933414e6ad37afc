"""
@file identity.py
@brief Risoluzione a cascata di acquirente e negozio dai segnali estratti.
@ingroup domain_module

@details
Cascata rigida, vince il primo successo, indipendente per utente e negozio.

Utente:
1) nome cliente del QR (split nome/cognome)
2) nome cliente dal testo
3) email esatta
4) telefono esatto (solo cifre)
5) id fornito dal chiamante, se UUID valido e non segnaposto

Negozio:
1) numero negozio del QR
2) nome negozio dal testo
3) id fornito dal chiamante (stessa regola)
"""

from __future__ import annotations
import logging
import re
import uuid
from functools import partial
from typing import Callable, Iterable, Optional, Protocol

from ricevute.config import IdentityPolicy
from .errors import StoreNotFound, UserNotFound
from .models import NOT_FOUND, CodePayload, IdentityResolution, ParsedReceiptFields

logger = logging.getLogger(__name__)


class IdentityStore(Protocol):
    """@brief Sorgente (sola lettura) di utenti e negozi; ogni metodo restituisce l'id o None."""

    def find_user_by_name(self, first_name: str, last_name: str) -> Optional[str]: ...

    def find_user_by_email(self, email: str) -> Optional[str]: ...

    def find_user_by_phone(self, digits: str) -> Optional[str]: ...

    def get_user(self, user_id: str) -> Optional[str]: ...

    def find_store_by_number(self, number: str) -> Optional[str]: ...

    def find_store_by_name(self, name: str) -> Optional[str]: ...

    def get_store(self, store_id: str) -> Optional[str]: ...


Step = tuple[str, Callable[[], Optional[str]]]


def split_name(full_name: str) -> tuple[str, str]:
    """@brief Primo token = nome, resto = cognome."""
    tokens = full_name.split()
    if not tokens:
        return "", ""
    return tokens[0], " ".join(tokens[1:])


def is_usable_id(value: Optional[str], policy: IdentityPolicy) -> bool:
    """@brief Vero se l'id fornito è un UUID sintatticamente valido e non un segnaposto."""
    if value is None:
        return False
    v = value.strip()
    if v in policy.placeholders:
        return False
    try:
        uuid.UUID(v)
    except ValueError:
        return False
    return True


def _first_hit(steps: Iterable[Step]) -> Optional[tuple[str, str]]:
    for method, lookup in steps:
        found = lookup()
        if found:
            return found, method
    return None


def _lookup_by_name(store: IdentityStore, full_name: str) -> Optional[str]:
    first, last = split_name(full_name)
    if not first:
        return None
    return store.find_user_by_name(first, last)


def _user_steps(
    payload: CodePayload,
    fields: ParsedReceiptFields,
    user_id: Optional[str],
    store: IdentityStore,
    policy: IdentityPolicy,
) -> list[Step]:
    steps: list[Step] = []
    if payload.customer_name:
        steps.append(("code_customer_name", partial(_lookup_by_name, store, payload.customer_name)))
    if fields.customer_name != NOT_FOUND:
        steps.append(("text_customer_name", partial(_lookup_by_name, store, fields.customer_name)))
    if fields.email != NOT_FOUND:
        steps.append(("email", partial(store.find_user_by_email, fields.email)))
    if fields.phone_number != NOT_FOUND:
        digits = re.sub(r"\D", "", fields.phone_number)
        if digits:
            steps.append(("phone", partial(store.find_user_by_phone, digits)))
    if is_usable_id(user_id, policy):
        steps.append(("provided_id", partial(store.get_user, user_id.strip())))
    return steps


def _store_steps(
    payload: CodePayload,
    fields: ParsedReceiptFields,
    store_id: Optional[str],
    store: IdentityStore,
    policy: IdentityPolicy,
) -> list[Step]:
    steps: list[Step] = []
    if payload.store_number:
        steps.append(("code_store_number", partial(store.find_store_by_number, payload.store_number)))
    if fields.store_name != NOT_FOUND:
        steps.append(("text_store_name", partial(store.find_store_by_name, fields.store_name)))
    if is_usable_id(store_id, policy):
        steps.append(("provided_id", partial(store.get_store, store_id.strip())))
    return steps


def resolve_identity(
    payload: CodePayload,
    fields: ParsedReceiptFields,
    user_id: Optional[str],
    store_id: Optional[str],
    store: IdentityStore,
    policy: Optional[IdentityPolicy] = None,
) -> IdentityResolution:
    """
    @brief Risolve utente e negozio con la cascata descritta nel modulo.
    @param payload Output del decoder QR (può essere vuoto).
    @param fields Campi estratti dal testo.
    @param user_id Id utente fornito dal chiamante (può essere un segnaposto).
    @param store_id Id negozio fornito dal chiamante (può essere un segnaposto).
    @param store Sorgente identità.
    @param policy Sentinelle segnaposto.
    @return IdentityResolution con id e metodo usato.

    @throws UserNotFound Nessun passo della cascata utente ha trovato un match.
    @throws StoreNotFound Nessun passo della cascata negozio ha trovato un match.
    """
    policy = policy or IdentityPolicy()

    user = _first_hit(_user_steps(payload, fields, user_id, store, policy))
    if user is None:
        details = {
            "code_customer_name": payload.customer_name,
            "text_customer_name": fields.customer_name,
            "email": fields.email,
            "phone_number": fields.phone_number,
            "provided_user_id": user_id,
        }
        logger.warning("Utente non risolto: %s", details)
        raise UserNotFound("Could not identify the customer for this receipt", details)

    shop = _first_hit(_store_steps(payload, fields, store_id, store, policy))
    if shop is None:
        details = {
            "code_store_number": payload.store_number,
            "text_store_name": fields.store_name,
            "provided_store_id": store_id,
        }
        logger.warning("Negozio non risolto: %s", details)
        raise StoreNotFound("Could not identify the store for this receipt", details)

    logger.info("Identità risolta: user=%s (%s) store=%s (%s)", user[0], user[1], shop[0], shop[1])
    return IdentityResolution(user_id=user[0], store_id=shop[0], user_method=user[1], store_method=shop[1])
