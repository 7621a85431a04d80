from invoice_bot.services.llm.base import InvoiceExtractor

SAMPLE_INVOICE = {
    "invoiceNumber": "INV-001",
    "issueDate": "2025-12-01",
    "dueDate": "2025-12-31",
    "recipient": {"name": "株式会社ABC", "address": "東京都渋谷区1-2-3", "postalCode": "1500042"},
    "issuer": {"name": ""},
    "items": [
        {"description": "コンサルティング費用", "quantity": 2, "unitPrice": 50000, "amount": 100000},
        {"description": "交通費", "quantity": 1, "unitPrice": 3000, "amount": 3000},
    ],
    "subtotal": 103000,
    "tax": 10300,
    "total": 113300,
    "notes": "",
}


class FakeExtractor(InvoiceExtractor):
    def __init__(self, result=None, error=None):
        self.result = dict(SAMPLE_INVOICE) if result is None else result
        self.error = error
        self.payloads = []

    async def extract_invoice_data(self, payload):
        self.payloads.append(payload)
        if self.error is not None:
            raise self.error
        return self.result
