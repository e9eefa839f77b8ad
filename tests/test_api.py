"""
Integration tests for the payment page and payment query endpoints.

Uses FastAPI TestClient with the real app (minus lifespan).
The get_db dependency is overridden to use an in-memory SQLite session and
the lifecycle controller is replaced by a mock, so nothing gets scheduled.
"""
from datetime import datetime, timedelta

from app import models
from app.services.signature import sign
from tests.conftest import MERCHANT_SECRET, MERCHANT_TOKEN, make_merchant, make_txn, payment_fields, signed

BASE_TIME = datetime(2024, 1, 15, 10, 0, 0)
PAGE_URL = f"/app/page/{MERCHANT_TOKEN}"
QUERY_URL = f"/{MERCHANT_TOKEN}/payment/query"


# ---------------------------------------------------------------------------
# POST /app/page/{merchant_token}
# ---------------------------------------------------------------------------
class TestCreatePayment:
    def test_form_request_creates_pending_transaction(self, client, db, merchant, lifecycle_mock):
        resp = client.post(PAGE_URL, data=signed(payment_fields()))

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["status"] == "0"
        assert body["merchant_reference"] == "ORDER-001"

        txn = db.query(models.Transaction).one()
        assert txn.request_reference == body["request_reference"]
        assert txn.status == "PENDING"
        assert txn.amount == "100.00"
        lifecycle_mock.start.assert_called_once_with(txn.id)

    def test_json_request_accepted(self, client, db, merchant):
        resp = client.post(PAGE_URL, json=signed(payment_fields()))
        assert resp.status_code == 200
        assert db.query(models.Transaction).count() == 1

    def test_unknown_merchant_404(self, client, db, lifecycle_mock):
        resp = client.post("/app/page/nobody", data=signed(payment_fields()))
        assert resp.status_code == 404
        assert db.query(models.Transaction).count() == 0
        lifecycle_mock.start.assert_not_called()

    def test_inactive_merchant_403(self, client, db):
        make_merchant(db, active=False)
        resp = client.post(PAGE_URL, data=signed(payment_fields()))
        assert resp.status_code == 403
        assert db.query(models.Transaction).count() == 0

    def test_bad_signature_rejected_before_insert(self, client, db, merchant, lifecycle_mock):
        fields = signed(payment_fields())
        fields["amount"] = "200.00"
        resp = client.post(PAGE_URL, data=fields)

        assert resp.status_code == 400
        assert "signature" in resp.json()["detail"].lower()
        assert db.query(models.Transaction).count() == 0
        lifecycle_mock.start.assert_not_called()

    def test_signature_from_other_secret_rejected(self, client, db, merchant):
        resp = client.post(PAGE_URL, data=signed(payment_fields(), secret="not-the-secret"))
        assert resp.status_code == 400

    def test_missing_signature_rejected(self, client, db, merchant):
        resp = client.post(PAGE_URL, data=payment_fields())
        assert resp.status_code == 400

    def test_amount_needs_two_decimals(self, client, db, merchant):
        resp = client.post(PAGE_URL, data=signed(payment_fields(amount="100.5")))
        assert resp.status_code == 400
        assert "amount" in resp.json()["detail"]

    def test_amount_with_too_many_integer_digits_rejected(self, client, db, merchant, lifecycle_mock):
        resp = client.post(PAGE_URL, data=signed(payment_fields(amount="1" * 11 + ".00")))
        assert resp.status_code == 400
        assert "amount" in resp.json()["detail"]
        assert db.query(models.Transaction).count() == 0
        lifecycle_mock.start.assert_not_called()

    def test_unknown_network_rejected(self, client, db, merchant):
        resp = client.post(PAGE_URL, data=signed(payment_fields(network="Bitcoin")))
        assert resp.status_code == 400

    def test_credit_card_requires_address(self, client, db, merchant):
        resp = client.post(PAGE_URL, data=signed(payment_fields(network="CreditCard", currency="USD")))
        assert resp.status_code == 400
        assert "customer_address" in resp.json()["detail"]

    def test_credit_card_with_address_and_usd(self, client, db, merchant):
        fields = payment_fields(
            network="CreditCard",
            currency="USD",
            customer_address="1, Bay Street",
            customer_country="US",
            customer_postal_code="10001",
            customer_state="NY",
        )
        resp = client.post(PAGE_URL, data=signed(fields))
        assert resp.status_code == 200

    def test_atome_minimum_amount(self, client, db, merchant):
        fields = payment_fields(
            network="Atome",
            amount="29.99",
            customer_address="1, Bay Street",
            customer_country="HK",
            customer_postal_code="000000",
        )
        resp = client.post(PAGE_URL, data=signed(fields))
        assert resp.status_code == 400
        assert "30.00" in resp.json()["detail"]

    def test_non_card_network_hkd_only(self, client, db, merchant):
        resp = client.post(PAGE_URL, data=signed(payment_fields(network="WechatPay", currency="USD")))
        assert resp.status_code == 400
        assert "HKD" in resp.json()["detail"]

    def test_return_url_gets_redirect_page(self, client, db, merchant):
        fields = payment_fields(return_url="https://merchant.example.com/return")
        resp = client.post(PAGE_URL, data=signed(fields))

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/html")
        txn = db.query(models.Transaction).one()
        assert txn.request_reference in resp.text
        assert "https://merchant.example.com/return?" in resp.text
        assert "status=0" in resp.text

    def test_same_merchant_reference_twice_creates_two(self, client, db, merchant):
        client.post(PAGE_URL, data=signed(payment_fields()))
        client.post(PAGE_URL, data=signed(payment_fields()))
        refs = {t.request_reference for t in db.query(models.Transaction).all()}
        assert len(refs) == 2


# ---------------------------------------------------------------------------
# POST /{merchant_token}/payment/query
# ---------------------------------------------------------------------------
class TestQueryPayment:
    def query(self, client, reference, secret=MERCHANT_SECRET):
        fields = {"merchant_reference": reference}
        return client.post(QUERY_URL, data={**fields, "sign": sign(fields, secret)})

    def test_returns_all_matches_oldest_first(self, client, db, merchant):
        second = make_txn(db, merchant, merchant_reference="R1", created_at=BASE_TIME + timedelta(minutes=1))
        first = make_txn(
            db, merchant,
            merchant_reference="R1",
            amount="100.00",
            status="SUCCESS",
            created_at=BASE_TIME,
            completed_at=BASE_TIME + timedelta(seconds=3),
        )

        resp = self.query(client, "R1")

        assert resp.status_code == 200
        body = resp.json()
        assert [r["request_reference"] for r in body] == [first.request_reference, second.request_reference]
        assert body[0] == {
            "type": "Sale",
            "merchant_reference": "R1",
            "request_reference": first.request_reference,
            "status": "1",
            "currency": "HKD",
            "amount": "100.000000",
            "created_time": 1705312800,
            "completed_time": 1705312803,
        }
        assert body[1]["completed_time"] is None
        assert body[1]["status"] == "0"

    def test_unknown_reference_returns_empty_list(self, client, db, merchant):
        resp = self.query(client, "nothing")
        assert resp.status_code == 200
        assert resp.json() == []

    def test_bad_signature_rejected(self, client, db, merchant):
        make_txn(db, merchant, merchant_reference="R1")
        resp = self.query(client, "R1", secret="wrong")
        assert resp.status_code == 400

    def test_unknown_merchant_404(self, client, db):
        fields = {"merchant_reference": "R1"}
        resp = client.post("/nobody/payment/query", data={**fields, "sign": sign(fields, MERCHANT_SECRET)})
        assert resp.status_code == 404

    def test_missing_reference_rejected(self, client, db, merchant):
        resp = client.post(QUERY_URL, data={"sign": "a" * 128})
        assert resp.status_code == 400


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"
