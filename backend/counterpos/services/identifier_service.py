# Overview: Service-layer operations for identifier; encapsulates business logic and database work.

"""
Identifier Service - human-legible unique identifiers

FORMATS:
- Ledger/payment ids: PREFIX-<base36 ms timestamp>-<9 random base36 chars>
  e.g. PAY-lx3k9a2b-4f8k2m1qz, LT-lx3k9a2b-0c7d1e9fa
- Product barcodes: PRD<ms timestamp><6 random upper-case chars>
- Product QR payload codes: QR<ms timestamp><same 6 chars>

COLLISIONS: the random suffix makes collisions negligible, but they are
still possible. They surface as a unique-constraint IntegrityError on
insert and are retried with a freshly generated id, never ignored.
"""

from __future__ import annotations

import logging
import secrets
import string
import time

from sqlalchemy.exc import IntegrityError

from ..errors import PersistenceError
from ..extensions import db

logger = logging.getLogger(__name__)

BASE36_ALPHABET = string.digits + string.ascii_lowercase
SUFFIX_LENGTH = 9
PRODUCT_CODE_SUFFIX_LENGTH = 6

PAYMENT_PREFIX = "PAY"
LOYALTY_PREFIX = "LT"


def _now_ms() -> int:
    return int(time.time() * 1000)


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("value must be >= 0")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(BASE36_ALPHABET[rem])
    return "".join(reversed(digits))


def _random_suffix(length: int, alphabet: str = BASE36_ALPHABET) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))


def generate_identifier(prefix: str) -> str:
    """Time component plus random suffix, e.g. PAY-lx3k9a2b-4f8k2m1qz."""
    return f"{prefix}-{to_base36(_now_ms())}-{_random_suffix(SUFFIX_LENGTH)}"


def generate_product_codes() -> tuple[str, str]:
    """Return (barcode, qr_code) sharing one timestamp and suffix."""
    timestamp = _now_ms()
    suffix = _random_suffix(PRODUCT_CODE_SUFFIX_LENGTH, string.digits + string.ascii_uppercase)
    return f"PRD{timestamp}{suffix}", f"QR{timestamp}{suffix}"


def add_with_fresh_identifier(build, prefix: str, *, attempts: int = 3):
    """
    Insert a row whose primary key is a generated identifier.

    build(identifier) must return a new, unsaved model instance. Each
    attempt runs inside a SAVEPOINT so a duplicate id only rolls back that
    insert, then a new id is generated. Must be called inside an open
    transaction.
    """
    # Flush pending work first so an IntegrityError below can only come
    # from the row being inserted here.
    db.session.flush()

    for attempt in range(attempts):
        identifier = generate_identifier(prefix)
        instance = build(identifier)
        try:
            with db.session.begin_nested():
                db.session.add(instance)
            return instance
        except IntegrityError:
            logger.warning(
                "Identifier collision on %s (attempt %s/%s); regenerating",
                identifier, attempt + 1, attempts,
            )

    raise PersistenceError(
        f"Could not generate a unique {prefix} identifier",
        details={"prefix": prefix, "attempts": attempts},
    )
