"""
Collection-style access to the document database.

Callers address records by logical collection name ("documents",
"shareGrants", ...) and get plain dicts back, so nothing outside this module
holds a live ORM instance. Every SQLAlchemy failure is rolled back and
re-raised as StorageFailure, after being handed to the ``on_error`` hook
(the audit logger's error path once the app is wired up).
"""
import logging
from functools import wraps

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from errors import StorageFailure
from models import db, COLLECTIONS

log = logging.getLogger(__name__)


def _storage_errors(func):
    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except SQLAlchemyError as exc:
            self.session.rollback()
            log.error("database %s failed: %s", func.__name__, exc)
            if self.on_error is not None:
                self.on_error(exc, f"Database {func.__name__} failed")
            raise StorageFailure() from exc
    return wrapper


class DocumentDatabase:

    def __init__(self, on_error=None):
        self.on_error = on_error

    @property
    def session(self):
        return db.session

    def _model(self, collection):
        try:
            return COLLECTIONS[collection]
        except KeyError:
            raise ValueError(f"unknown collection {collection!r}") from None

    @_storage_errors
    def insert(self, collection, record):
        row = self._model(collection)(**record)
        self.session.add(row)
        self.session.commit()
        return row.id

    @_storage_errors
    def get_by_id(self, collection, record_id):
        row = self.session.get(self._model(collection), record_id)
        return row.to_dict() if row is not None else None

    @_storage_errors
    def update_by_id(self, collection, record_id, patch):
        model = self._model(collection)
        result = self.session.execute(
            update(model).where(model.id == record_id).values(**patch)
        )
        self.session.commit()
        return result.rowcount

    @_storage_errors
    def increment(self, collection, record_id, field, amount=1, where=None, **patch):
        """
        Server-side ``field = field + amount`` in one UPDATE statement.

        ``where`` adds equality conditions (e.g. status="active"); the return
        value is the number of rows changed, 0 when the conditions fail.
        """
        model = self._model(collection)
        column = getattr(model, field)
        stmt = update(model).where(model.id == record_id)
        for name, value in (where or {}).items():
            stmt = stmt.where(getattr(model, name) == value)
        result = self.session.execute(stmt.values({field: column + amount, **patch}))
        self.session.commit()
        return result.rowcount

    @_storage_errors
    def query(self, collection, filters=None, order_by=None, descending=False, limit=None):
        """
        Rows matching every filter. A filter value that is a list/tuple/set
        matches any of its members.
        """
        model = self._model(collection)
        q = self.session.query(model)
        for name, value in (filters or {}).items():
            column = getattr(model, name)
            if isinstance(value, (list, tuple, set, frozenset)):
                q = q.filter(column.in_(list(value)))
            else:
                q = q.filter(column == value)
        if order_by:
            column = getattr(model, order_by)
            q = q.order_by(column.desc() if descending else column.asc())
        if limit:
            q = q.limit(limit)
        return [row.to_dict() for row in q.all()]
