"""
Base repository: CRUD over one collection with result normalization.

Every entity repository runs the same pipeline on writes:
validate (pydantic schema) -> normalize references -> strip/stamp -> persist.

Reads return normalized dicts: the native ``_id`` becomes a string ``id``,
every ObjectId becomes a string and every datetime is timezone-aware UTC.
Read and count paths log persistence errors and return None/[]/0; unique
index violations on writes surface as `ConflictError`. Bulk updates and
writes inside a transaction re-raise driver errors.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Type, Union

from bson import ObjectId
from bson.errors import InvalidDocument
from pydantic import BaseModel
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from compete.database import validation
from compete.database.errors import ConflictError, InvalidTransitionError
from compete.utils.datetime_utils import ensure_utc, next_timestamp

logger = logging.getLogger(__name__)

Document = Dict[str, Any]
SortSpec = Union[None, Dict[str, int], Sequence[Tuple[str, int]]]
IndexSpec = Tuple[Union[str, List[Tuple[str, int]]], Dict[str, Any]]

# Failures a read path logs and degrades on
READ_ERRORS = (PyMongoError, InvalidDocument)

# Attempts at stamping updatedAt against a concurrently changing document
STAMP_ATTEMPTS = 5


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Return ``value`` as an ObjectId, or None when it is not a well-formed id."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def _to_portable(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, dict):
        return normalize_document(value)
    if isinstance(value, list):
        return [_to_portable(item) for item in value]
    return value


def normalize_document(doc: Optional[Document]) -> Optional[Document]:
    """Convert a stored document (and any embedded ones) to the portable shape."""
    if doc is None:
        return None
    result = {key: _to_portable(value) for key, value in doc.items() if key != "_id"}
    if "_id" in doc:
        result["id"] = _to_portable(doc["_id"])
    return result


class BaseRepository:
    """
    CRUD operations shared by every entity repository.

    Subclasses set `collection_name`, `schema` and `object_id_fields`, and
    implement `create_indexes()`.
    """

    collection_name: str = ""
    schema: Optional[Type[BaseModel]] = None
    # Reference fields stored as ObjectId and returned as strings
    object_id_fields: Tuple[str, ...] = ()
    # Keys ignored in update patches
    immutable_fields: Tuple[str, ...] = ("id", "_id", "createdAt")
    conflict_message = "Ce document existe déjà"

    def __init__(self, db, *, supports_transactions: bool = False):
        """
        Args:
            db: Database handle (from `MongoConnection.connect()`)
            supports_transactions: Whether the deployment can run transactions
        """
        self.db = db
        self.collection = db[self.collection_name]
        self.supports_transactions = supports_transactions

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _opts(session) -> Dict[str, Any]:
        return {"session": session} if session is not None else {}

    @asynccontextmanager
    async def _transaction(self):
        """
        Yield a client session inside a transaction, or None when unsupported.

        Without transaction support the body runs as ordered single-document
        writes and the unique indexes remain the final guard.
        """
        if not self.supports_transactions:
            yield None
            return
        async with await self.db.client.start_session() as session:
            async with session.start_transaction():
                yield session

    def _coerce_ref(self, value: Any) -> Any:
        if isinstance(value, str):
            return to_object_id(value) or value
        if isinstance(value, list):
            return [self._coerce_ref(item) for item in value]
        if isinstance(value, dict):
            return {key: self._coerce_ref(item) for key, item in value.items()}
        return value

    def _to_storage(self, doc: Document) -> Document:
        """Convert string references to ObjectId for storage."""
        stored = dict(doc)
        for field in self.object_id_fields:
            if stored.get(field) is not None:
                stored[field] = self._coerce_ref(stored[field])
        return stored

    def _build_filter(self, filter: Optional[Document]) -> Document:
        """Translate a caller filter (string ids) into a storage query."""
        query = dict(filter or {})
        if "id" in query:
            value = query.pop("id")
            query["_id"] = self._coerce_ref(value)
        elif "_id" in query:
            query["_id"] = self._coerce_ref(query["_id"])
        for field in self.object_id_fields:
            if field in query:
                query[field] = self._coerce_ref(query[field])
        return query

    @staticmethod
    def _sort_list(sort: SortSpec) -> Optional[List[Tuple[str, int]]]:
        if not sort:
            return None
        if isinstance(sort, dict):
            return list(sort.items())
        return list(sort)

    def _prepare_document(self, doc: Document) -> Document:
        """Hook for derived fields, applied to create documents and update patches."""
        return doc

    def _conflict(self, error: DuplicateKeyError) -> ConflictError:
        """Map a unique-index violation to the domain error of this entity."""
        return ConflictError(self.conflict_message)

    def _build_update(self, patch: Document) -> Document:
        to_set = {key: value for key, value in patch.items() if value is not None}
        to_unset = {key: "" for key, value in patch.items() if value is None}
        update: Document = {"$set": self._to_storage(to_set)}
        if to_unset:
            update["$unset"] = to_unset
        return update

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find_by_id(self, id: Any, session=None) -> Optional[Document]:
        """
        Find a document by id.

        Args:
            id: String id or ObjectId; malformed ids are treated as not found

        Returns:
            Normalized document, or None
        """
        object_id = to_object_id(id)
        if object_id is None:
            return None
        try:
            doc = await self.collection.find_one({"_id": object_id}, **self._opts(session))
        except READ_ERRORS as e:
            logger.error(f"Error finding {self.collection_name} {id}: {e}", exc_info=True)
            return None
        return normalize_document(doc)

    async def find_one(self, filter: Optional[Document] = None, session=None) -> Optional[Document]:
        try:
            doc = await self.collection.find_one(self._build_filter(filter), **self._opts(session))
        except READ_ERRORS as e:
            logger.error(f"Error querying {self.collection_name}: {e}", exc_info=True)
            return None
        return normalize_document(doc)

    async def find_many(
        self,
        filter: Optional[Document] = None,
        sort: SortSpec = None,
        limit: int = 0,
        skip: int = 0,
        session=None,
    ) -> List[Document]:
        """
        Find every document matching ``filter``.

        Args:
            filter: Query; string ids in reference fields are accepted
            sort: {"field": 1} or [("field", -1), ...]
            limit: Maximum number of documents (0 = no limit)
            skip: Number of documents to skip

        Returns:
            List of normalized documents (empty on error)
        """
        try:
            cursor = self.collection.find(
                self._build_filter(filter),
                sort=self._sort_list(sort),
                skip=skip,
                limit=limit,
                **self._opts(session),
            )
            docs = await cursor.to_list(length=None)
        except READ_ERRORS as e:
            logger.error(f"Error listing {self.collection_name}: {e}", exc_info=True)
            return []
        return [normalize_document(doc) for doc in docs]

    async def count(self, filter: Optional[Document] = None) -> int:
        """Count matching documents. Returns 0 on error."""
        try:
            return await self.collection.count_documents(self._build_filter(filter))
        except READ_ERRORS as e:
            logger.error(f"Error counting {self.collection_name}: {e}", exc_info=True)
            return 0

    async def aggregate(self, pipeline: List[Document]) -> List[Document]:
        """Run an aggregation pipeline and normalize the results. Returns [] on error."""
        try:
            cursor = self.collection.aggregate(pipeline)
            docs = await cursor.to_list(length=None)
        except READ_ERRORS as e:
            logger.error(f"Aggregation on {self.collection_name} failed: {e}", exc_info=True)
            return []
        return [normalize_document(doc) for doc in docs]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _prepare_create(self, data: Document) -> Document:
        doc = {
            key: value
            for key, value in dict(data or {}).items()
            if key not in ("id", "_id", "createdAt", "updatedAt")
        }
        if self.schema is not None:
            doc = validation.validate(self.schema, doc)
        doc = self._prepare_document(doc)
        now = next_timestamp()
        doc["createdAt"] = now
        doc["updatedAt"] = now
        doc = {key: value for key, value in doc.items() if value is not None}
        return self._to_storage(doc)

    async def create(self, data: Document, session=None) -> Optional[Document]:
        """
        Validate and insert a document, then return the stored version.

        Caller-supplied id and timestamps are discarded; createdAt and
        updatedAt are stamped with the same instant.

        Returns:
            Normalized stored document, or None if the insert yielded no id

        Raises:
            ValidationError: If the document does not match the schema
            ConflictError: If a unique index rejects the document
            PyMongoError: If the insert fails inside a transaction
        """
        doc = self._prepare_create(data)
        try:
            result = await self.collection.insert_one(doc, **self._opts(session))
        except DuplicateKeyError as e:
            raise self._conflict(e) from e
        except PyMongoError as e:
            logger.error(f"Error inserting into {self.collection_name}: {e}", exc_info=True)
            if session is not None:
                # The transaction is aborted; let the caller see why
                raise
            return None
        if not result.inserted_id:
            return None
        return await self.find_by_id(result.inserted_id, session=session)

    def _prepare_patch(self, data: Document) -> Document:
        patch = {
            key: value
            for key, value in dict(data or {}).items()
            if key not in self.immutable_fields
        }
        patch.pop("updatedAt", None)
        if self.schema is not None:
            patch = validation.validate(self.schema, patch, partial=True)
        return self._prepare_document(patch)

    async def update_by_id(self, id: Any, data: Document, session=None) -> Optional[Document]:
        """
        Apply a partial update.

        Keys set to None are removed from the document. id and createdAt in
        the patch are ignored; updatedAt is refreshed.

        Returns:
            Normalized post-update document, or None if nothing matched

        Raises:
            ValidationError: If a supplied field is invalid
            ConflictError: If a unique index rejects the change
        """
        object_id = to_object_id(id)
        if object_id is None:
            return None
        patch = self._prepare_patch(data)
        return await self._update_where({"_id": object_id}, self._build_update(patch), session=session)

    @staticmethod
    def _stamped(update: Document, previous: Optional[datetime]) -> Document:
        stamped = {operator: dict(fields) for operator, fields in update.items()}
        stamped.setdefault("$set", {})["updatedAt"] = next_timestamp(previous)
        return stamped

    async def _update_where(self, query: Document, update: Document, session=None) -> Optional[Document]:
        """
        Atomically update the first document matching ``query``; return it post-update.

        updatedAt is always moved strictly past its stored value: the write is
        conditioned on the updatedAt read just before it, and retried if a
        concurrent write got in between.

        Returns:
            Normalized post-update document, or None if nothing matched

        Raises:
            ConflictError: If a unique index rejects the change
            PyMongoError: If the update fails inside a transaction
        """
        for _ in range(STAMP_ATTEMPTS):
            try:
                current = await self.collection.find_one(query, {"updatedAt": 1}, **self._opts(session))
                if current is None:
                    return None
                previous = current.get("updatedAt")
                doc = await self.collection.find_one_and_update(
                    {**query, "_id": current["_id"], "updatedAt": previous},
                    self._stamped(update, previous),
                    return_document=ReturnDocument.AFTER,
                    **self._opts(session),
                )
            except DuplicateKeyError as e:
                raise self._conflict(e) from e
            except PyMongoError as e:
                if session is not None:
                    raise
                logger.error(f"Error updating {self.collection_name}: {e}", exc_info=True)
                return None
            if doc is not None:
                return normalize_document(doc)
        logger.warning(
            f"Update on {self.collection_name} lost {STAMP_ATTEMPTS} races with concurrent writes"
        )
        return None

    async def _transition(
        self,
        id: Any,
        entity: str,
        allowed_from: Iterable[str],
        target: str,
        fields: Optional[Document] = None,
        session=None,
    ) -> Optional[Document]:
        """
        Move a record to status ``target`` in one conditional update.

        The update only matches while the current status is in
        ``allowed_from``, so concurrent transitions cannot both succeed.

        Returns:
            The updated record, or None if no record has this id

        Raises:
            InvalidTransitionError: If the record exists in another status
        """
        object_id = to_object_id(id)
        if object_id is None:
            return None
        update = {"$set": {"status": target, **(fields or {})}}
        doc = await self._update_where(
            {"_id": object_id, "status": {"$in": list(allowed_from)}}, update, session=session
        )
        if doc is not None:
            return doc
        current = await self.find_by_id(object_id, session=session)
        if current is None:
            return None
        raise InvalidTransitionError(entity, current.get("status"), target)

    async def _update_many(self, query: Document, fields: Document, session=None) -> int:
        """
        Set ``fields`` (plus updatedAt) on every match.

        Returns:
            Number of documents modified

        Raises:
            PyMongoError: If the write fails
        """
        update = {"$set": {**self._to_storage(fields), "updatedAt": next_timestamp()}}
        try:
            result = await self.collection.update_many(
                self._build_filter(query), update, **self._opts(session)
            )
        except PyMongoError as e:
            logger.error(f"Bulk update on {self.collection_name} failed: {e}", exc_info=True)
            raise
        return result.modified_count

    async def delete_by_id(self, id: Any) -> bool:
        """Delete by id. Returns True only if exactly one document was removed."""
        object_id = to_object_id(id)
        if object_id is None:
            return False
        try:
            result = await self.collection.delete_one({"_id": object_id})
        except PyMongoError as e:
            logger.error(f"Error deleting {self.collection_name} {id}: {e}", exc_info=True)
            return False
        return result.deleted_count == 1

    async def _delete_many(self, query: Document) -> int:
        try:
            result = await self.collection.delete_many(query)
        except PyMongoError as e:
            logger.error(f"Purge on {self.collection_name} failed: {e}", exc_info=True)
            return 0
        return result.deleted_count

    # ------------------------------------------------------------------
    # Indexes
    # ------------------------------------------------------------------

    async def create_indexes(self) -> None:
        """Create the indexes of this collection."""
        raise NotImplementedError

    async def _ensure_indexes(self, specs: Iterable[IndexSpec]) -> int:
        """
        Create each index independently, logging (not raising) failures.

        Returns:
            Number of indexes created (or already present)
        """
        specs = list(specs)
        results = await asyncio.gather(
            *(self.collection.create_index(keys, **options) for keys, options in specs),
            return_exceptions=True,
        )
        created = 0
        for (keys, _), result in zip(specs, results):
            if isinstance(result, Exception):
                logger.error(
                    f"Failed to create index {keys} on {self.collection_name}: {result}"
                )
            else:
                created += 1
        logger.info(f"Ensured {created}/{len(specs)} indexes on {self.collection_name}")
        return created
