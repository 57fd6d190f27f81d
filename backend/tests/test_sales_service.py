"""
Checkout tests.

Verifies:
- A sale decrements stock, writes one SALE ledger entry per line and one payment
- Any failure leaves no sale, stock, payment or loyalty change behind
- Client-supplied prices and amounts must match server pricing
- Loyalty points are floor(profit * rate)
"""

from decimal import Decimal

import pytest

from counterpos.errors import InsufficientStock, PersistenceError, ProductNotFound, ValidationError
from counterpos.extensions import db
from counterpos.models import (
    Customer,
    LoyaltyTransaction,
    Payment,
    PaymentMethod,
    Product,
    Sale,
    SaleItem,
    StockChangeType,
    StockLog,
)
from counterpos.services import identifier_service, sales_service
from counterpos.services.loyalty_service import points_for_profit
from counterpos.services.sales_service import LineItemRequest, SaleRequest, create_sale
from counterpos.services.stock_service import verify_stock_ledger


def _card_sale(*items, customer_id=None):
    return SaleRequest(
        items=tuple(LineItemRequest(product_id=pid, quantity=qty) for pid, qty in items),
        payment_method=PaymentMethod.CARD,
        customer_id=customer_id,
    )


def _counts():
    return {
        "sales": db.session.query(Sale).count(),
        "items": db.session.query(SaleItem).count(),
        "payments": db.session.query(Payment).count(),
        "sale_logs": db.session.query(StockLog).filter_by(type=StockChangeType.SALE).count(),
        "loyalty": db.session.query(LoyaltyTransaction).count(),
    }


# =============================================================================
# HAPPY PATH
# =============================================================================


class TestCreateSale:

    def test_stock_ten_sell_three(self, cashier, product):
        result = create_sale(cashier.id, _card_sale((product.id, 3)))
        sale = result.sale

        assert db.session.get(Product, product.id).stock_quantity == 7
        assert sale.subtotal_cents == 3000
        assert sale.total_cents == 3000
        assert sale.profit_cents == 1500
        assert sale.created_by == cashier.id

        log = db.session.query(StockLog).filter_by(product_id=product.id, type=StockChangeType.SALE).one()
        assert (log.quantity, log.previous_stock, log.new_stock) == (3, 10, 7)
        assert log.reference == f"Sale #{sale.id}"
        assert log.reason == "Sale"

        assert sale.payment.amount_cents == 3000
        assert sale.payment.payment_method is PaymentMethod.CARD
        assert sale.payment.id.startswith("PAY-")

        item = sale.items[0]
        assert item.stock_log_id == log.id
        assert verify_stock_ledger(product.id)["consistent"] is True

    def test_lines_recorded_in_submission_order(self, cashier, make_product):
        high = make_product(stock=5, price=2000, cost=1000)
        low = make_product(stock=5, price=300, cost=100)

        # Higher id first: locking is by id, recording is by submission
        result = create_sale(cashier.id, _card_sale((low.id, 1), (high.id, 2)))

        items = result.sale.items
        assert [i.line_number for i in items] == [1, 2]
        assert [i.product_id for i in items] == [low.id, high.id]
        assert result.sale.total_cents == 300 + 4000

    def test_same_product_on_two_lines(self, cashier, product):
        create_sale(cashier.id, _card_sale((product.id, 4), (product.id, 5)))

        assert db.session.get(Product, product.id).stock_quantity == 1
        logs = (
            db.session.query(StockLog)
            .filter_by(product_id=product.id, type=StockChangeType.SALE)
            .order_by(StockLog.id.asc())
            .all()
        )
        assert [(l.previous_stock, l.new_stock) for l in logs] == [(10, 6), (6, 1)]

    def test_discount_line(self, cashier, product):
        request = SaleRequest(
            items=(LineItemRequest(product_id=product.id, quantity=2, discount_percent=Decimal("10"), price_cents=900),),
            payment_method=PaymentMethod.MOBILE,
            payment_amount_cents=1800,
        )
        sale = create_sale(cashier.id, request).sale

        assert sale.subtotal_cents == 2000
        assert sale.discount_cents == 200
        assert sale.total_cents == 1800
        assert sale.items[0].price_cents == 900
        assert sale.items[0].discount_percent == Decimal("10")


# =============================================================================
# PAYMENT RULES
# =============================================================================


class TestPayment:

    def test_cash_change(self, cashier, product):
        request = SaleRequest(
            items=(LineItemRequest(product_id=product.id, quantity=1),),
            payment_method=PaymentMethod.CASH,
            payment_received_cents=2000,
        )
        payment = create_sale(cashier.id, request).sale.payment

        assert payment.received_amount_cents == 2000
        assert payment.change_amount_cents == 1000

    def test_cash_short_rejected(self, cashier, product):
        request = SaleRequest(
            items=(LineItemRequest(product_id=product.id, quantity=1),),
            payment_method=PaymentMethod.CASH,
            payment_received_cents=999,
        )
        with pytest.raises(ValidationError):
            create_sale(cashier.id, request)
        assert db.session.get(Product, product.id).stock_quantity == 10

    def test_cash_requires_received_amount(self, cashier, product):
        request = SaleRequest(
            items=(LineItemRequest(product_id=product.id, quantity=1),),
            payment_method=PaymentMethod.CASH,
        )
        with pytest.raises(ValidationError):
            create_sale(cashier.id, request)

    def test_card_has_no_change(self, cashier, product):
        payment = create_sale(cashier.id, _card_sale((product.id, 1))).sale.payment
        assert payment.received_amount_cents == 1000
        assert payment.change_amount_cents == 0

    def test_card_overpayment_rejected(self, cashier, product):
        request = SaleRequest(
            items=(LineItemRequest(product_id=product.id, quantity=1),),
            payment_method=PaymentMethod.CARD,
            payment_received_cents=1500,
        )
        with pytest.raises(ValidationError):
            create_sale(cashier.id, request)

    def test_wrong_change_rejected(self, cashier, product):
        request = SaleRequest(
            items=(LineItemRequest(product_id=product.id, quantity=1),),
            payment_method=PaymentMethod.CASH,
            payment_received_cents=2000,
            payment_change_cents=500,
        )
        with pytest.raises(ValidationError):
            create_sale(cashier.id, request)

    def test_stale_client_price_rejected(self, cashier, product):
        request = SaleRequest(
            items=(LineItemRequest(product_id=product.id, quantity=1, price_cents=800),),
            payment_method=PaymentMethod.CARD,
        )
        with pytest.raises(ValidationError) as exc_info:
            create_sale(cashier.id, request)
        assert exc_info.value.details["expected_price_cents"] == 1000

    def test_payment_amount_must_match_total(self, cashier, product):
        request = SaleRequest(
            items=(LineItemRequest(product_id=product.id, quantity=2),),
            payment_method=PaymentMethod.CARD,
            payment_amount_cents=1000,
        )
        with pytest.raises(ValidationError):
            create_sale(cashier.id, request)


# =============================================================================
# ATOMICITY
# =============================================================================


class TestAtomicity:

    def test_insufficient_stock_writes_nothing(self, cashier, product):
        before = _counts()

        with pytest.raises(InsufficientStock) as exc_info:
            create_sale(cashier.id, _card_sale((product.id, 15)))

        assert exc_info.value.details["requested"] == 15
        assert exc_info.value.details["available"] == 10
        assert db.session.get(Product, product.id).stock_quantity == 10
        assert _counts() == before

    def test_second_line_failure_rolls_back_first(self, cashier, make_product):
        plenty = make_product(stock=50)
        scarce = make_product(stock=1)
        before = _counts()

        with pytest.raises(InsufficientStock):
            create_sale(cashier.id, _card_sale((plenty.id, 5), (scarce.id, 2)))

        assert db.session.get(Product, plenty.id).stock_quantity == 50
        assert db.session.get(Product, scarce.id).stock_quantity == 1
        assert _counts() == before

    def test_unknown_product(self, cashier, product):
        before = _counts()
        with pytest.raises(ProductNotFound):
            create_sale(cashier.id, _card_sale((product.id, 1), (999_999, 1)))
        assert db.session.get(Product, product.id).stock_quantity == 10
        assert _counts() == before

    def test_inactive_product_cannot_be_sold(self, cashier, make_product):
        retired = make_product(stock=5, is_active=False)
        with pytest.raises(ProductNotFound):
            create_sale(cashier.id, _card_sale((retired.id, 1)))

    def test_unknown_customer(self, cashier, product):
        with pytest.raises(ValidationError):
            create_sale(cashier.id, _card_sale((product.id, 1), customer_id=999_999))
        assert db.session.get(Product, product.id).stock_quantity == 10

    def test_unknown_actor(self, db_session, product):
        with pytest.raises(ValidationError):
            create_sale(999_999, _card_sale((product.id, 1)))

    @pytest.mark.parametrize("quantity", [0, -2])
    def test_non_positive_quantity(self, cashier, product, quantity):
        with pytest.raises(ValidationError):
            create_sale(cashier.id, _card_sale((product.id, quantity)))

    def test_empty_sale(self, cashier):
        with pytest.raises(ValidationError):
            create_sale(cashier.id, SaleRequest(items=(), payment_method=PaymentMethod.CARD))

    def test_payment_id_exhaustion_rolls_back(self, cashier, product, monkeypatch):
        cashier_id, product_id = cashier.id, product.id
        create_sale(cashier_id, _card_sale((product_id, 1)))
        taken = db.session.query(Payment.id).scalar()
        # Drop the persisted payment from the identity map so the duplicate
        # id reaches the database as a unique-constraint violation
        db.session.expunge_all()
        before = _counts()

        monkeypatch.setattr(identifier_service, "generate_identifier", lambda prefix: taken)

        with pytest.raises(PersistenceError):
            create_sale(cashier_id, _card_sale((product_id, 2)))

        assert db.session.get(Product, product_id).stock_quantity == 9
        assert _counts() == before

    def test_loyalty_failure_rolls_back_sale(self, cashier, product, customer, monkeypatch):
        before = _counts()

        def _boom(*args, **kwargs):
            raise PersistenceError("loyalty store unavailable")

        monkeypatch.setattr(sales_service, "accrue", _boom)

        with pytest.raises(PersistenceError):
            create_sale(cashier.id, _card_sale((product.id, 5), customer_id=customer.id))

        assert db.session.get(Product, product.id).stock_quantity == 10
        assert db.session.get(Customer, customer.id).loyalty_points == 0
        assert _counts() == before


# =============================================================================
# LOYALTY
# =============================================================================


class TestLoyalty:

    @pytest.mark.parametrize("profit_cents,expected", [
        (10000, 5),
        (1500, 0),
        (3999, 1),
        (4000, 2),
        (0, 0),
        (-500, 0),
    ])
    def test_points_for_profit(self, profit_cents, expected):
        assert points_for_profit(profit_cents, Decimal("0.05")) == expected

    def test_profit_100_earns_5_points(self, cashier, make_product, customer):
        item = make_product(stock=10, cost=1000, price=3000)

        result = create_sale(cashier.id, _card_sale((item.id, 5), customer_id=customer.id))

        assert result.sale.profit_cents == 10000
        assert result.loyalty_points_earned == 5
        assert db.session.get(Customer, customer.id).loyalty_points == 5

        txn = result.loyalty_transaction
        assert isinstance(txn, LoyaltyTransaction)
        assert txn.points == 5
        assert txn.balance == 5
        assert txn.reference == result.sale.reference
        assert txn.id.startswith("LT-")

    def test_small_profit_earns_nothing(self, cashier, make_product, customer):
        item = make_product(stock=10, cost=1000, price=1500)

        result = create_sale(cashier.id, _card_sale((item.id, 3), customer_id=customer.id))

        assert result.sale.profit_cents == 1500
        assert result.loyalty_points_earned == 0
        assert result.loyalty_transaction is None
        assert db.session.query(LoyaltyTransaction).count() == 0

    def test_no_customer_no_points(self, cashier, make_product):
        item = make_product(stock=10, cost=1000, price=3000)
        result = create_sale(cashier.id, _card_sale((item.id, 5)))
        assert result.loyalty_transaction is None

    def test_balance_accumulates(self, cashier, make_product, customer):
        item = make_product(stock=20, cost=1000, price=3000)

        create_sale(cashier.id, _card_sale((item.id, 5), customer_id=customer.id))
        second = create_sale(cashier.id, _card_sale((item.id, 10), customer_id=customer.id))

        assert second.loyalty_transaction.balance == 15
        assert db.session.get(Customer, customer.id).loyalty_points == 15
