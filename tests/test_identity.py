import uuid

import pytest

from ricevute.domain.errors import StoreNotFound, UserNotFound
from ricevute.domain.identity import is_usable_id, resolve_identity, split_name
from ricevute.config import IdentityPolicy
from ricevute.domain.models import CodePayload, ParsedReceiptFields
from ricevute.storage.identity import SqliteIdentityStore


@pytest.fixture()
def store(conn):
    return SqliteIdentityStore(conn)


def test_split_name():
    assert split_name("Maria da Silva") == ("Maria", "da Silva")
    assert split_name("  ") == ("", "")


def test_usable_id_rejects_placeholders_and_garbage():
    policy = IdentityPolicy()
    assert is_usable_id(str(uuid.uuid4()), policy)
    assert not is_usable_id("placeholder-user-id", policy)
    assert not is_usable_id("abc", policy)
    assert not is_usable_id(None, policy)


def test_code_payload_name_wins_over_text(store, add_user, add_store):
    ana = add_user("Ana", "Lima")
    add_user("Maria", "Silva")
    shop = add_store("POSTO CENTRAL LTDA", "42")

    res = resolve_identity(
        CodePayload(customer_name="Ana Lima", store_number="42", success=True),
        ParsedReceiptFields(customer_name="Maria Silva", store_name="Outro Posto"),
        None,
        None,
        store,
    )
    assert (res.user_id, res.user_method) == (ana, "code_customer_name")
    assert (res.store_id, res.store_method) == (shop, "code_store_number")


def test_text_name_is_case_insensitive(store, add_user, add_store):
    maria = add_user("Maria", "Silva")
    shop = add_store("Posto Central Ltda")
    res = resolve_identity(
        CodePayload(),
        ParsedReceiptFields(customer_name="MARIA SILVA", store_name="POSTO CENTRAL LTDA"),
        None,
        None,
        store,
    )
    assert (res.user_id, res.user_method) == (maria, "text_customer_name")
    assert (res.store_id, res.store_method) == (shop, "text_store_name")


def test_email_then_phone_fallback(store, add_user, add_store):
    by_mail = add_user("Joana", "Reis", email="joana@example.com")
    by_phone = add_user("Rui", "Costa", phone="(11) 98765-4321")
    add_store("Posto")

    res = resolve_identity(
        CodePayload(),
        ParsedReceiptFields(customer_name="Ninguem Aqui", email="JOANA@example.com", store_name="Posto"),
        None,
        None,
        store,
    )
    assert (res.user_id, res.user_method) == (by_mail, "email")

    res = resolve_identity(
        CodePayload(),
        ParsedReceiptFields(phone_number="11987654321", store_name="Posto"),
        None,
        None,
        store,
    )
    assert (res.user_id, res.user_method) == (by_phone, "phone")


def test_ambiguous_name_falls_through_to_provided_id(store, add_user, add_store):
    first = add_user("Maria", "Silva")
    add_user("Maria", "Silva")
    shop = add_store("Posto")
    res = resolve_identity(
        CodePayload(),
        ParsedReceiptFields(customer_name="Maria Silva"),
        first,
        shop,
        store,
    )
    assert res.user_method == "provided_id"
    assert res.store_method == "provided_id"


@pytest.mark.parametrize("user_id", ["placeholder-user-id", "not-a-uuid", str(uuid.uuid4()), None])
def test_unresolved_user_raises(store, add_store, user_id):
    add_store("Posto")
    with pytest.raises(UserNotFound) as exc:
        resolve_identity(CodePayload(), ParsedReceiptFields(store_name="Posto"), user_id, None, store)
    assert exc.value.details["provided_user_id"] == user_id


def test_unresolved_store_raises(store, add_user):
    maria = add_user("Maria", "Silva")
    with pytest.raises(StoreNotFound):
        resolve_identity(
            CodePayload(store_number="999"),
            ParsedReceiptFields(customer_name="Maria Silva", store_name="Sconosciuto"),
            maria,
            "placeholder-store-id",
            store,
        )
