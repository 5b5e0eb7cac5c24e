"""Tests for loading the JSON envelopes and committing replacements."""

import json
import os
import threading
import time

import pytest

from app import document_store
from app.document_store import FILE_BY_KIND, DocumentStore, DocumentStoreError
from app.models import CreditNote, DebitNote, DocumentKind, PurchaseOrder, ReceiptTaxInvoice
from app.persistence import StorageError, write_envelope


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def test_loads_every_kind(store):
    assert {kind for kind in DocumentKind} == set(FILE_BY_KIND)
    assert [po.No for po in store.records(DocumentKind.PURCHASE_ORDER)] == ["PO-1", "PO-2"]
    assert isinstance(store.records(DocumentKind.RECEIPT_TAX_INVOICE)[0], ReceiptTaxInvoice)


def test_list_envelope_returned_as_list(store):
    notes = store.get(DocumentKind.CREDIT_NOTE)
    assert isinstance(notes, list)
    assert notes[0].No == "CN-1700000000000"


def test_single_record_envelope_returned_as_record(store):
    note = store.get(DocumentKind.DEBIT_NOTE)
    assert isinstance(note, DebitNote)
    assert note.DifferenceAmount == pytest.approx(60)
    assert [n.No for n in store.records(DocumentKind.DEBIT_NOTE)] == ["DN-1700000000000"]


def test_party_codes_keep_their_stored_form(store):
    receipt = store.records(DocumentKind.RECEIPT_TAX_INVOICE)[0]
    assert receipt.Seller.Branch == "00000"
    assert receipt.Seller.PostalCode == 10110
    assert receipt.Buyer.ID == 42


def test_purchase_order_free_text_reference(store):
    po = store.records(DocumentKind.PURCHASE_ORDER)[0]
    assert isinstance(po, PurchaseOrder)
    assert po.References == "QT-2024-015"


def test_null_envelope_is_empty_collection(data_dir):
    (data_dir / "Credit_Note.json").write_text(json.dumps({"GetInvoice": None}))
    store = DocumentStore.load(data_dir)
    assert store.records(DocumentKind.CREDIT_NOTE) == []


# ---------------------------------------------------------------------------
# Fail fast on bad files
# ---------------------------------------------------------------------------

def test_missing_file_fails(data_dir):
    (data_dir / "PO.json").unlink()
    with pytest.raises(DocumentStoreError, match="PO.json"):
        DocumentStore.load(data_dir)


def test_invalid_json_fails(data_dir):
    (data_dir / "Debit_Note.json").write_text("{not json")
    with pytest.raises(DocumentStoreError, match="Debit_Note.json"):
        DocumentStore.load(data_dir)


def test_missing_envelope_key_fails(data_dir):
    (data_dir / "Credit_Note.json").write_text(json.dumps({"Invoices": []}))
    with pytest.raises(DocumentStoreError, match="GetInvoice"):
        DocumentStore.load(data_dir)


def test_invalid_record_fails(data_dir):
    (data_dir / "ReceiptTax_Invoice.json").write_text(
        json.dumps({"GetInvoice": [{"No": "RCPT-9", "Amount": "lots"}]})
    )
    with pytest.raises(DocumentStoreError, match="ReceiptTax_Invoice.json"):
        DocumentStore.load(data_dir)


# ---------------------------------------------------------------------------
# Commit
# ---------------------------------------------------------------------------

def _note(no="CN-1"):
    return CreditNote(TypeCode="CN", No=no, Amount=90.0, TaxAmount=6.3, Total=96.3)


def test_commit_replaces_collection_with_single_record(store, data_dir):
    store.commit(DocumentKind.CREDIT_NOTE, _note())

    assert store.get(DocumentKind.CREDIT_NOTE).No == "CN-1"
    on_disk = json.loads((data_dir / "Credit_Note.json").read_text(encoding="utf-8"))
    assert on_disk == {
        "GetInvoice": {"TypeCode": "CN", "No": "CN-1", "Amount": 90.0, "TaxAmount": 6.3, "Total": 96.3}
    }


def test_commit_leaves_no_temp_files(store, data_dir):
    store.commit(DocumentKind.CREDIT_NOTE, _note())
    assert sorted(p.name for p in data_dir.iterdir()) == sorted(FILE_BY_KIND.values())


def test_commit_rejects_wrong_model(store):
    with pytest.raises(TypeError):
        store.commit(DocumentKind.DEBIT_NOTE, _note())


def _broken_replace(src, dst):
    raise OSError("disk full")


def test_failed_write_keeps_old_state(store, data_dir, monkeypatch):
    before = (data_dir / "Credit_Note.json").read_text(encoding="utf-8")

    monkeypatch.setattr(os, "replace", _broken_replace)
    with pytest.raises(StorageError, match="disk full"):
        store.commit(DocumentKind.CREDIT_NOTE, _note())

    assert (data_dir / "Credit_Note.json").read_text(encoding="utf-8") == before
    assert store.get(DocumentKind.CREDIT_NOTE)[0].No == "CN-1700000000000"
    assert sorted(p.name for p in data_dir.iterdir()) == sorted(FILE_BY_KIND.values())


def test_commit_releases_lock_after_failure(store, monkeypatch):
    monkeypatch.setattr(os, "replace", _broken_replace)
    with pytest.raises(StorageError):
        store.commit(DocumentKind.CREDIT_NOTE, _note())
    monkeypatch.undo()

    store.commit(DocumentKind.CREDIT_NOTE, _note("CN-2"))
    assert store.get(DocumentKind.CREDIT_NOTE).No == "CN-2"


def test_unencodable_text_fails_without_temp_files(store, data_dir):
    before = (data_dir / "Credit_Note.json").read_text(encoding="utf-8")
    note = CreditNote(TypeCode="CN", No="CN-1", Amount=90.0, Seller={"Name": "Siam \ud800"})

    with pytest.raises(StorageError):
        store.commit(DocumentKind.CREDIT_NOTE, note)

    assert sorted(p.name for p in data_dir.iterdir()) == sorted(FILE_BY_KIND.values())
    assert (data_dir / "Credit_Note.json").read_text(encoding="utf-8") == before
    assert store.get(DocumentKind.CREDIT_NOTE)[0].No == "CN-1700000000000"


def test_concurrent_commits_are_serialized(store, data_dir, monkeypatch):
    active = 0
    peak = 0
    counter_lock = threading.Lock()

    def slow_write(path, payload):
        nonlocal active, peak
        with counter_lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.05)
        try:
            write_envelope(path, payload)
        finally:
            with counter_lock:
                active -= 1

    monkeypatch.setattr(document_store, "write_envelope", slow_write)
    threads = [
        threading.Thread(target=store.commit, args=(DocumentKind.CREDIT_NOTE, _note(f"CN-{i}")))
        for i in range(4)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert peak == 1
    on_disk = json.loads((data_dir / "Credit_Note.json").read_text(encoding="utf-8"))
    assert on_disk["GetInvoice"]["No"] == store.get(DocumentKind.CREDIT_NOTE).No


# ---------------------------------------------------------------------------
# Reload / info
# ---------------------------------------------------------------------------

def test_reload_picks_up_disk_changes(store, data_dir):
    (data_dir / "PO.json").write_text(json.dumps({"GetInvoice": [{"No": "PO-9"}]}))
    store.reload()
    assert [po.No for po in store.records(DocumentKind.PURCHASE_ORDER)] == ["PO-9"]


def test_info_reports_counts_and_shapes(store, data_dir):
    info = store.info()
    assert info["data_dir"] == str(data_dir)
    assert info["collections"]["ReceiptTaxInvoice"] == {
        "file": "ReceiptTax_Invoice.json",
        "count": 2,
        "shape": "list",
    }
    assert info["collections"]["DebitNote"]["shape"] == "record"
