import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import inspect, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from storefront.models.abandoned_checkout import AbandonedCheckout
from storefront.models.cart_session import CartSession
from storefront.models.discount_code import DiscountCode
from storefront.models.order import Order
from storefront.models.payment_failure import PaymentFailure
from storefront.utils.clock import as_utc
from storefront.utils.result import (
    CONFLICT,
    INVALID,
    STORE_ERROR,
    Err,
    Ok,
    Result,
    UpdateCount,
)

log = logging.getLogger("storefront.store")

CARTS = "carts"
CHECKOUTS = "abandoned_checkouts"
PAYMENT_FAILURES = "payment_failures"
DISCOUNT_CODES = "discount_codes"
ORDERS = "orders"

RECORD_TYPES = {
    CARTS: CartSession,
    CHECKOUTS: AbandonedCheckout,
    PAYMENT_FAILURES: PaymentFailure,
    DISCOUNT_CODES: DiscountCode,
    ORDERS: Order,
}

_OPERATORS = {
    "$ne": lambda col, v: col.is_not(None) if v is None else col != v,
    "$in": lambda col, v: col.in_(list(v)),
    "$nin": lambda col, v: col.not_in(list(v)),
    "$lt": lambda col, v: col < v,
    "$lte": lambda col, v: col <= v,
    "$gt": lambda col, v: col > v,
    "$gte": lambda col, v: col >= v,
}


class InvalidQuery(Exception):
    pass


def _bind(value):
    if isinstance(value, datetime):
        return as_utc(value)
    return value


class RecordStore:
    """
    Generic document-style access to the lifecycle tables.

    Every call runs on its own short-lived session and commits before
    returning, so a conditional update is one UPDATE ... WHERE statement and
    its matched count reflects the filter at write time.

    Filters are dicts: {field: value} for equality (None = IS NULL), or
    {field: {"$op": value}} with $ne, $in, $nin, $lt, $lte, $gt, $gte.
    Patches are {field: value} assignments plus {"$inc": {field: n}}.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def _model(self, record_type: str):
        model = RECORD_TYPES.get(record_type)
        if model is None:
            raise InvalidQuery(f"Unknown record type: {record_type}")
        return model

    def _column(self, model, field: str):
        if field not in model.__table__.columns:
            raise InvalidQuery(f"Unknown field {field!r} on {model.__tablename__}")
        return getattr(model, field)

    def _where(self, model, flt: Optional[Dict[str, Any]]) -> list:
        clauses = []
        for field, cond in (flt or {}).items():
            col = self._column(model, field)
            if isinstance(cond, dict):
                for op, operand in cond.items():
                    fn = _OPERATORS.get(op)
                    if fn is None:
                        raise InvalidQuery(f"Unsupported operator {op!r}")
                    clauses.append(fn(col, _bind(operand)))
            elif cond is None:
                clauses.append(col.is_(None))
            else:
                clauses.append(col == _bind(cond))
        return clauses

    def _values(self, model, patch: Dict[str, Any]) -> dict:
        values = {}
        for field, value in patch.items():
            if field == "$inc":
                for inc_field, n in value.items():
                    col = self._column(model, inc_field)
                    values[inc_field] = col + n
                continue
            self._column(model, field)
            values[field] = _bind(value)
        if not values:
            raise InvalidQuery("Empty patch")
        return values

    @staticmethod
    def _to_doc(row) -> Dict[str, Any]:
        doc = {}
        for attr in inspect(type(row)).column_attrs:
            value = getattr(row, attr.key)
            if isinstance(value, datetime):
                value = as_utc(value)
            doc[attr.key] = value
        return doc

    def read(
        self,
        record_type: str,
        flt: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None,
        order_by: Optional[str] = None,
    ) -> Result[List[Dict[str, Any]]]:
        try:
            model = self._model(record_type)
            stmt = select(model).where(*self._where(model, flt))
            if order_by:
                desc = order_by.startswith("-")
                col = self._column(model, order_by.lstrip("-"))
                stmt = stmt.order_by(col.desc() if desc else col.asc())
            if limit:
                stmt = stmt.limit(limit)
        except InvalidQuery as e:
            return Err(INVALID, str(e))
        try:
            with self.session_factory() as s:
                rows = s.execute(stmt).scalars().all()
                return Ok([self._to_doc(r) for r in rows])
        except SQLAlchemyError as e:
            log.warning("read(%s) failed: %s", record_type, e)
            return Err(STORE_ERROR, str(e))

    def read_one(
        self, record_type: str, flt: Dict[str, Any]
    ) -> Result[Optional[Dict[str, Any]]]:
        res = self.read(record_type, flt, limit=1)
        if not res.ok:
            return res
        return Ok(res.value[0] if res.value else None)

    def create(self, record_type: str, doc: Dict[str, Any]) -> Result[Dict[str, Any]]:
        try:
            model = self._model(record_type)
            for field in doc:
                self._column(model, field)
        except InvalidQuery as e:
            return Err(INVALID, str(e))
        try:
            with self.session_factory() as s:
                row = model(**{k: _bind(v) for k, v in doc.items()})
                s.add(row)
                s.commit()
                s.refresh(row)
                return Ok(self._to_doc(row))
        except IntegrityError as e:
            log.debug("create(%s) conflict: %s", record_type, e.orig)
            return Err(CONFLICT, str(e.orig))
        except SQLAlchemyError as e:
            log.warning("create(%s) failed: %s", record_type, e)
            return Err(STORE_ERROR, str(e))

    def update(
        self, record_type: str, flt: Dict[str, Any], patch: Dict[str, Any]
    ) -> Result[UpdateCount]:
        """
        Apply patch to every row matching flt. The filter is evaluated by the
        database inside the UPDATE itself (compare-and-set per row).
        """
        try:
            model = self._model(record_type)
            stmt = (
                update(model)
                .where(*self._where(model, flt))
                .values(**self._values(model, patch))
                .execution_options(synchronize_session=False)
            )
        except InvalidQuery as e:
            return Err(INVALID, str(e))
        try:
            with self.session_factory() as s:
                result = s.execute(stmt)
                s.commit()
                # SQL reports rows matched by the WHERE clause
                matched = result.rowcount or 0
                return Ok(UpdateCount(matched=matched, modified=matched))
        except IntegrityError as e:
            return Err(CONFLICT, str(e.orig))
        except SQLAlchemyError as e:
            log.warning("update(%s) failed: %s", record_type, e)
            return Err(STORE_ERROR, str(e))

    def ping(self) -> bool:
        try:
            with self.session_factory() as s:
                s.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            return False
