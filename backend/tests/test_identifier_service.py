"""Generated identifier formats and collision retry."""

import re

import pytest

from counterpos.errors import PersistenceError
from counterpos.extensions import db
from counterpos.models import LoyaltyTransaction, LoyaltyTransactionType
from counterpos.services import identifier_service
from counterpos.services.concurrency import with_transaction
from counterpos.services.identifier_service import (
    LOYALTY_PREFIX,
    add_with_fresh_identifier,
    generate_identifier,
    generate_product_codes,
    to_base36,
)


class TestFormats:

    def test_to_base36(self):
        assert to_base36(0) == "0"
        assert to_base36(35) == "z"
        assert to_base36(36) == "10"
        assert to_base36(1_700_000_000_000) == "loyw3v28"

    def test_identifier_shape(self):
        identifier = generate_identifier("PAY")
        assert re.fullmatch(r"PAY-[0-9a-z]+-[0-9a-z]{9}", identifier)

    def test_identifiers_differ(self):
        assert len({generate_identifier("LT") for _ in range(200)}) == 200

    def test_product_codes_share_suffix(self):
        barcode, qr_code = generate_product_codes()
        assert re.fullmatch(r"PRD\d{13}[0-9A-Z]{6}", barcode)
        assert qr_code == "QR" + barcode[3:]


class TestCollisionRetry:

    def _loyalty_row(self, customer_id):
        def build(identifier):
            return LoyaltyTransaction(
                id=identifier,
                customer_id=customer_id,
                points=1,
                type=LoyaltyTransactionType.EARNED,
                balance=1,
            )
        return build

    def test_regenerates_on_duplicate(self, customer, monkeypatch):
        customer_id = customer.id
        build = self._loyalty_row(customer_id)
        with_transaction(lambda: add_with_fresh_identifier(build, LOYALTY_PREFIX))
        taken = db.session.query(LoyaltyTransaction.id).scalar()
        db.session.expunge_all()

        ids = iter([taken, "LT-fresh-000000001"])
        monkeypatch.setattr(identifier_service, "generate_identifier", lambda prefix: next(ids))

        row = with_transaction(lambda: add_with_fresh_identifier(build, LOYALTY_PREFIX))

        assert row.id == "LT-fresh-000000001"
        assert db.session.query(LoyaltyTransaction).count() == 2

    def test_gives_up_after_attempts(self, customer, monkeypatch):
        customer_id = customer.id
        build = self._loyalty_row(customer_id)
        with_transaction(lambda: add_with_fresh_identifier(build, LOYALTY_PREFIX))
        taken = db.session.query(LoyaltyTransaction.id).scalar()
        db.session.expunge_all()

        monkeypatch.setattr(identifier_service, "generate_identifier", lambda prefix: taken)

        with pytest.raises(PersistenceError):
            with_transaction(lambda: add_with_fresh_identifier(build, LOYALTY_PREFIX, attempts=2))

        assert db.session.query(LoyaltyTransaction).count() == 1
