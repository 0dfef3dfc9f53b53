"""
Custom (tailoring) orders.

Order ids are allocated per calendar month as ``CO-<YYMM>-<NNNN>``. The
allocator reads the highest sequence of the current month and adds one;
two creators racing on the same read are separated by the unique index on
``order_id``, and the loser retries with a fresh allocation.
"""
import logging
import time
from datetime import datetime
from typing import Callable, NamedTuple, Optional, TypeVar, Union

from bson import ObjectId
from pydantic import ValidationError
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

import config
import database
from errors import (
    DuplicateKey,
    MarketplaceError,
    NotFound,
    TransientStoreFailure,
    ValidationFailure,
    describe_errors,
)
from schemas import CUSTOM_ORDER_STATUSES, CustomOrder, CustomOrderCreate, CustomOrderUpdate

logger = logging.getLogger(__name__)

COLLECTION = "customorder"

# reference field -> (collection, projected fields, populated key)
REFERENCES = {
    "designer_id": ("designer", ("name", "profile_picture", "email"), "designer"),
    "user_id": ("user", ("name", "profile_picture", "email"), "user"),
    "brand_id": ("brand", ("name", "logo", "email"), "brand"),
    "product_id": ("product", ("name", "images", "price"), "product"),
}

IMMUTABLE_FIELDS = ("order_id", "period", "sequence", "created_at")

T = TypeVar("T")


class OrderNumber(NamedTuple):
    order_id: str
    period: str
    sequence: int


def format_order_id(period: str, sequence: int) -> str:
    return f"CO-{period}-{sequence:04d}"


def allocate_order_id(session=None, now: Optional[datetime] = None) -> OrderNumber:
    """Next id for the month of ``now``; the sequence restarts at 1 each month."""
    now = now or database.utcnow()
    period = now.strftime("%y%m")
    latest = database.collection(COLLECTION).find_one(
        {"period": period},
        {"sequence": 1},
        sort=[("sequence", -1)],
        session=session,
    )
    sequence = latest["sequence"] + 1 if latest else 1
    return OrderNumber(format_order_id(period, sequence), period, sequence)


def _is_collision(error) -> bool:
    # concurrent inserts of one order_id inside transactions usually surface
    # as a write conflict rather than a duplicate key
    if isinstance(error, (DuplicateKeyError, DuplicateKey)):
        return True
    return isinstance(error, PyMongoError) and error.has_error_label("TransientTransactionError")


def retry_with_backoff(operation: Callable[[], T], attempts: int = None, delay: float = None,
                       sleep: Callable[[float], None] = time.sleep) -> T:
    """Run ``operation`` up to ``attempts`` times, sleeping ``n * delay`` after failed attempt n.

    Client errors (validation, not found) propagate at once. Store errors are
    retried; once the budget is spent a duplicate key or write conflict becomes
    DuplicateKey and anything else TransientStoreFailure.
    """
    attempts = attempts or config.ORDER_CREATE_ATTEMPTS
    delay = config.ORDER_RETRY_DELAY_S if delay is None else delay
    last_error = None
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except MarketplaceError as exc:
            if not exc.retryable:
                raise
            last_error = exc
        except PyMongoError as exc:
            last_error = exc
        logger.warning("Attempt %d/%d failed: %s", attempt, attempts, type(last_error).__name__)
        if attempt < attempts:
            sleep(delay * attempt)

    logger.error("Giving up after %d attempts: %s", attempts, last_error)
    if _is_collision(last_error):
        raise DuplicateKey("Could not allocate a unique order id, please try again") from last_error
    if isinstance(last_error, MarketplaceError):
        raise last_error
    raise TransientStoreFailure("Server error while creating order") from last_error


def populate(order: dict, session=None, strict: bool = True) -> dict:
    """Attach name/image/email projections of the four referenced entities.

    With ``strict`` a missing entity raises NotFound; otherwise it is
    attached as None so an order outlives a deleted product or brand.
    """
    populated = database.serialize(order)
    for field, (collection, fields, key) in REFERENCES.items():
        ref = order.get(field)
        target = database.fetch_projection(collection, ref, fields, session=session)
        if target is None and strict:
            raise NotFound(f"{key.capitalize()} {ref} not found")
        populated[key] = target
    return populated


def _validate_create(payload: Union[CustomOrderCreate, dict]) -> CustomOrderCreate:
    if isinstance(payload, CustomOrderCreate):
        data = payload
    else:
        try:
            data = CustomOrderCreate.model_validate(payload)
        except ValidationError as exc:
            raise ValidationFailure("Invalid order data", describe_errors(exc.errors())) from exc
    bad = [f for f in REFERENCES if not ObjectId.is_valid(getattr(data, f))]
    if bad:
        raise ValidationFailure("Invalid order data", [f"{f}: invalid id" for f in bad])
    return data


def create_custom_order(payload: Union[CustomOrderCreate, dict], now: Optional[datetime] = None,
                        sleep: Callable[[float], None] = time.sleep) -> dict:
    data = _validate_create(payload)
    document = data.model_dump()

    def attempt() -> dict:
        with database.transaction() as session:
            number = allocate_order_id(session=session, now=now)
            doc = CustomOrder(**document, **number._asdict(), status="pending")
            inserted_id = database.create_document(COLLECTION, doc, session=session)
            stored = database.collection(COLLECTION).find_one({"_id": database.object_id(inserted_id)}, session=session)
            return populate(stored, session=session, strict=True)

    order = retry_with_backoff(attempt, sleep=sleep)
    logger.info("Created custom order %s", order["order_id"])
    return order


def list_custom_orders(designer_id: Optional[str] = None, user_id: Optional[str] = None,
                       status: Optional[str] = None) -> list:
    filters = {}
    if designer_id:
        filters["designer_id"] = designer_id
    if user_id:
        filters["user_id"] = user_id
    if status:
        filters["status"] = status
    docs = database.get_documents(COLLECTION, filters, sort=[("created_at", -1)])
    return [database.serialize(d) for d in docs]


def get_custom_order(id: str) -> dict:
    doc = database.collection(COLLECTION).find_one({"_id": database.object_id(id, "order id")})
    if not doc:
        raise NotFound("Custom order not found")
    return populate(doc, strict=False)


def _apply_update(id: str, changes: dict) -> dict:
    changes["updated_at"] = database.utcnow()
    doc = database.collection(COLLECTION).find_one_and_update(
        {"_id": database.object_id(id, "order id")},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise NotFound("Custom order not found")
    return database.serialize(doc)


def update_custom_order(id: str, changes: dict) -> dict:
    locked = [f for f in IMMUTABLE_FIELDS if f in changes]
    if locked:
        raise ValidationFailure("Field cannot be changed", [f"{f}: immutable" for f in locked])
    try:
        update = CustomOrderUpdate.model_validate(changes)
    except ValidationError as exc:
        raise ValidationFailure("Invalid order data", describe_errors(exc.errors())) from exc
    return _apply_update(id, update.model_dump(exclude_unset=True, exclude_none=True))


def update_custom_order_status(id: str, status: Optional[str]) -> dict:
    if not status:
        raise ValidationFailure("Status is required")
    if status not in CUSTOM_ORDER_STATUSES:
        raise ValidationFailure(f"Invalid status. Use one of: {', '.join(CUSTOM_ORDER_STATUSES)}")
    return _apply_update(id, {"status": status})


def delete_custom_order(id: str) -> None:
    result = database.collection(COLLECTION).delete_one({"_id": database.object_id(id, "order id")})
    if result.deleted_count == 0:
        raise NotFound("Custom order not found")
