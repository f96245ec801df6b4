"""
Tests for payment processing, listing and cancellation.
"""
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from gateway import ChargeResult, get_payment_gateway
from models import Payment, Product


class ExplodingGateway:
    """Fails after the pending payment row has been inserted."""

    def charge(self, payment):
        raise RuntimeError("gateway unreachable")


class DecliningGateway:
    def charge(self, payment):
        return ChargeResult(status="failed")


@pytest.fixture
def listing(register, make_product):
    seller, seller_headers = register("seller")
    product_id = make_product(seller["id"], price=Decimal("25000.00"), title="Bicycle")
    return product_id, seller, seller_headers


@pytest.fixture
def buyer(register):
    return register("buyer")


def pay(client, headers, product_id, amount="25000", **extra):
    payload = {
        "product_id": product_id,
        "amount": amount,
        "payment_method": "mpesa",
        "phone_number": "0712345678",
        **extra,
    }
    return client.post("/api/payments/process", json=payload, headers=headers)


def payment_count(database):
    with database.session() as s:
        return s.execute(select(func.count(Payment.id))).scalar_one()


def product_active(database, product_id):
    with database.session() as s:
        return s.get(Product, product_id).is_active


class TestProcessPayment:
    def test_completed_payment_deactivates_product(self, client, database, listing, buyer):
        product_id, _, _ = listing
        _, headers = buyer

        response = pay(client, headers, product_id)

        assert response.status_code == 200, response.text
        payment = response.json()["payment"]
        assert payment["status"] == "completed"
        assert payment["transaction_id"].startswith("TXN-")
        assert payment["reference"].startswith("TUKU-")
        assert product_active(database, product_id) is False

    def test_caller_supplied_reference_is_kept(self, client, listing, buyer):
        product_id, _, _ = listing
        _, headers = buyer
        response = pay(client, headers, product_id, reference="MY-REF-1")
        assert response.json()["payment"]["reference"] == "MY-REF-1"

    def test_amount_is_recorded_at_listed_price(self, client, database, listing, buyer):
        product_id, _, _ = listing
        _, headers = buyer

        response = pay(client, headers, product_id, amount="25000.004")

        assert response.status_code == 200
        with database.session() as s:
            assert s.execute(select(Payment.amount)).scalar_one() == Decimal("25000.00")

    def test_self_purchase_is_rejected_before_any_write(self, client, database, listing):
        product_id, _, seller_headers = listing

        response = pay(client, seller_headers, product_id)

        assert response.status_code == 400
        assert response.json()["message"] == "You cannot buy your own product"
        assert payment_count(database) == 0
        assert product_active(database, product_id) is True

    def test_amount_mismatch_is_rejected_before_any_write(self, client, database, listing, buyer):
        product_id, _, _ = listing
        _, headers = buyer

        response = pay(client, headers, product_id, amount="24999.99")

        assert response.status_code == 400
        assert response.json()["message"] == "Payment amount does not match product price"
        assert payment_count(database) == 0

    def test_sold_product_cannot_be_bought_again(self, client, listing, buyer, register):
        product_id, _, _ = listing
        _, headers = buyer
        pay(client, headers, product_id)
        _, other_headers = register()

        assert pay(client, other_headers, product_id).status_code == 404

    def test_gateway_failure_rolls_everything_back(self, client, app, database, listing, buyer):
        product_id, _, _ = listing
        _, headers = buyer
        app.dependency_overrides[get_payment_gateway] = ExplodingGateway

        response = pay(client, headers, product_id)

        assert response.status_code == 500
        assert response.json()["success"] is False
        assert payment_count(database) == 0
        assert product_active(database, product_id) is True

    def test_declined_payment_keeps_product_on_sale(self, client, app, database, listing, buyer):
        product_id, _, _ = listing
        _, headers = buyer
        app.dependency_overrides[get_payment_gateway] = DecliningGateway

        response = pay(client, headers, product_id)

        assert response.status_code == 400
        assert product_active(database, product_id) is True
        with database.session() as s:
            assert s.execute(select(Payment.status)).scalar_one() == "failed"

    def test_error_detail_hidden_in_production(self, client, app, listing, buyer):
        product_id, _, _ = listing
        _, headers = buyer
        app.state.settings.environment = "production"
        app.dependency_overrides[get_payment_gateway] = ExplodingGateway

        response = pay(client, headers, product_id)

        assert response.status_code == 500
        assert "error" not in response.json()


class TestPaymentListings:
    def test_buyer_and_seller_views(self, client, listing, buyer):
        product_id, _, seller_headers = listing
        _, buyer_headers = buyer
        pay(client, buyer_headers, product_id)

        mine = client.get("/api/payments/my-payments", headers=buyer_headers).json()
        sales = client.get("/api/payments/seller/sales", headers=seller_headers).json()

        assert mine["pagination"]["total"] == 1
        assert mine["payments"][0]["product_title"] == "Bicycle"
        assert mine["payments"][0]["seller_name"] == "seller"
        assert sales["sales"][0]["buyer_name"] == "buyer"
        assert sales["sales"][0]["buyer_email"] == "buyer@example.com"

    def test_status_filter(self, client, listing, buyer):
        product_id, _, _ = listing
        _, headers = buyer
        pay(client, headers, product_id)

        completed = client.get("/api/payments/my-payments", params={"status": "completed"}, headers=headers).json()
        pending = client.get("/api/payments/my-payments", params={"status": "pending"}, headers=headers).json()
        bogus = client.get("/api/payments/my-payments", params={"status": "paid"}, headers=headers)

        assert completed["pagination"]["total"] == 1
        assert pending["pagination"] == {"total": 0, "page": 1, "limit": 20, "total_pages": 0}
        assert bogus.status_code == 400

    def test_detail_only_for_buyer(self, client, listing, buyer, register):
        product_id, _, _ = listing
        _, headers = buyer
        payment_id = pay(client, headers, product_id).json()["payment"]["id"]
        _, stranger_headers = register()

        detail = client.get(f"/api/payments/{payment_id}", headers=headers)
        hidden = client.get(f"/api/payments/{payment_id}", headers=stranger_headers)

        assert detail.status_code == 200
        assert detail.json()["payment"]["seller_name"] == "seller"
        assert hidden.status_code == 404


class TestCancelPayment:
    def _pending_payment(self, database, buyer_id, product_id):
        with database.session() as s:
            payment = Payment(
                user_id=buyer_id,
                product_id=product_id,
                amount=Decimal("25000"),
                payment_method="mpesa",
                phone_number="0712345678",
                reference="PENDING-1",
                status="pending",
            )
            s.add(payment)
            s.get(Product, product_id).is_active = False
            s.commit()
            return payment.id

    def test_cancel_pending_payment_reactivates_product(self, client, database, listing, buyer):
        product_id, _, _ = listing
        buyer_user, headers = buyer
        payment_id = self._pending_payment(database, buyer_user["id"], product_id)

        response = client.post(f"/api/payments/{payment_id}/cancel", headers=headers)

        assert response.status_code == 200
        assert product_active(database, product_id) is True
        with database.session() as s:
            assert s.get(Payment, payment_id).status == "cancelled"

    def test_completed_payment_cannot_be_cancelled(self, client, listing, buyer):
        product_id, _, _ = listing
        _, headers = buyer
        payment_id = pay(client, headers, product_id).json()["payment"]["id"]

        assert client.post(f"/api/payments/{payment_id}/cancel", headers=headers).status_code == 404
