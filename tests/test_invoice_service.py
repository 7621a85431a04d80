import json
from datetime import date

import pytest
from pydantic import ValidationError

from invoice_bot.services.invoice_service import (
    build_edit_url,
    complete_invoice,
    create_invoice_draft,
    get_invoice,
    normalize_invoice_data,
    recalculate_totals,
    update_invoice_data,
)
from invoice_bot.services.pdf_service import build_pdf_file_name, format_currency, generate_invoice_pdf
from tests.helpers import SAMPLE_INVOICE


class TestTotals:
    def test_tax_is_floored(self):
        data = recalculate_totals({"items": [{"amount": 999}, {"amount": 1}]})
        assert (data["subtotal"], data["tax"], data["total"]) == (1000, 100, 1100)

        data = recalculate_totals({"items": [{"amount": 1234}]})
        assert (data["subtotal"], data["tax"], data["total"]) == (1234, 123, 1357)

    def test_negative_amounts(self):
        data = recalculate_totals({"items": [{"amount": 10000}, {"amount": -12000}]})
        assert data["subtotal"] == -2000
        assert data["tax"] == -200

    def test_recompute_is_idempotent(self):
        once = recalculate_totals({"items": [{"amount": 1999}, {"amount": 3}]})
        assert recalculate_totals(once) == once

    def test_no_items(self):
        data = recalculate_totals({})
        assert (data["subtotal"], data["tax"], data["total"]) == (0, 0, 0)


class TestNormalizeInvoiceData:
    def test_null_fields_defaulted(self):
        data = normalize_invoice_data(
            {"recipient": None, "items": [{"description": None, "quantity": None, "unitPrice": 500, "amount": 500}]}
        )

        assert data["recipient"] == {"name": ""}
        assert data["items"][0] == {"description": "", "quantity": 0, "unitPrice": 500, "amount": 500}
        assert data["total"] == 550

    def test_invalid_shape(self):
        with pytest.raises(ValidationError):
            normalize_invoice_data({"items": "none"})


class TestInvoicePersistence:
    def test_create_and_get(self, db_session):
        invoice = create_invoice_draft(db_session, "oc_chat", "om_1", dict(SAMPLE_INVOICE))
        db_session.commit()

        assert invoice.status == "draft"
        assert get_invoice(db_session, invoice.id).id == invoice.id
        assert get_invoice(db_session, "missing") is None

    def test_update_recomputes_totals(self, db_session):
        invoice = create_invoice_draft(db_session, "oc_chat", "om_1", dict(SAMPLE_INVOICE))
        update_invoice_data(db_session, invoice, {**SAMPLE_INVOICE, "items": [{"description": "追加", "amount": 2000}]})
        db_session.commit()

        data = json.loads(invoice.data)
        assert data["items"][0]["description"] == "追加"
        assert (data["subtotal"], data["tax"], data["total"]) == (2000, 200, 2200)

    def test_complete(self, db_session):
        invoice = create_invoice_draft(db_session, "oc_chat", "om_1", dict(SAMPLE_INVOICE))
        complete_invoice(db_session, invoice, "lark://file/file_v2_1")
        db_session.commit()

        assert invoice.status == "completed"
        assert invoice.pdf_url == "lark://file/file_v2_1"

    def test_edit_url(self):
        assert build_edit_url("abc") == "https://invoices.example.com/invoice/abc"


class TestPdf:
    def test_file_name(self):
        assert build_pdf_file_name(SAMPLE_INVOICE) == "2025-12-01_株式会社ABC様.pdf"

    def test_file_name_sanitized_and_defaulted(self):
        data = {"recipient": {"name": 'A/B:C*"D"'}}
        assert build_pdf_file_name(data, today=date(2026, 1, 5)) == "2026-01-05_A_B_C__D_様.pdf"
        assert build_pdf_file_name({}, today=date(2026, 1, 5)) == "2026-01-05_請求先様.pdf"

    def test_format_currency(self):
        assert format_currency(113300) == "¥113,300"
        assert format_currency(-2000) == "-¥2,000"
        assert format_currency(None) == "¥0"

    def test_generates_pdf(self):
        content = generate_invoice_pdf({**SAMPLE_INVOICE, "notes": "振込先 <銀行>\n担当者: 山田"})
        assert content.startswith(b"%PDF")
