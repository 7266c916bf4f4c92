"""Schemaless document store on top of the SQLAlchemy ``documents`` table.

Documents live in named collections (slash separated paths) and are
identified by generated ids. Every write bumps the document version so
callers can make conditional updates. A subscriber first receives the
whole collection, then after every write only the documents that changed.
"""
from __future__ import annotations

import json
import logging
import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from .models import DocumentRow


logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_letters + string.digits
_ID_LENGTH = 20


class _ServerTimestamp:
	def __repr__(self) -> str:
		return "SERVER_TIMESTAMP"


# Placeholder for a top-level field; replaced with the write time by the store
SERVER_TIMESTAMP = _ServerTimestamp()


class DocumentStoreError(Exception):
	pass


class DocumentExistsError(DocumentStoreError):
	pass


class VersionConflictError(DocumentStoreError):
	pass


@dataclass
class Document:
	id: str
	data: Dict[str, Any] = field(default_factory=dict)
	version: int = 1
	created_at: Optional[datetime] = None
	updated_at: Optional[datetime] = None
	# Set on change notifications for a removed document
	deleted: bool = False

	def to_dict(self) -> Dict[str, Any]:
		return {"id": self.id, **self.data}


Subscriber = Callable[[List[Document]], Awaitable[None]]


def teacher_quizzes(app_id: str, uid: str) -> str:
	return f"artifacts/{app_id}/users/{uid}/quizzes"


def public_verifications(app_id: str) -> str:
	return f"artifacts/{app_id}/public/data/verifications"


def public_results(app_id: str) -> str:
	return f"artifacts/{app_id}/public/data/results"


def new_document_id() -> str:
	return "".join(secrets.choice(_ID_ALPHABET) for _ in range(_ID_LENGTH))


class DocumentStore:
	def __init__(self, session_factory: sessionmaker, *, clock: Optional[Callable[[], datetime]] = None) -> None:
		self._session_factory = session_factory
		self._clock = clock or (lambda: datetime.now(timezone.utc))
		self._subscribers: Dict[str, List[Subscriber]] = {}

	# ---- public API ----

	async def get(self, collection: str, doc_id: str) -> Optional[Document]:
		return await run_in_threadpool(self._get, collection, doc_id)

	async def list(self, collection: str) -> List[Document]:
		return await run_in_threadpool(self._list, collection)

	async def add(self, collection: str, data: Dict[str, Any]) -> Document:
		doc = await run_in_threadpool(self._insert, collection, new_document_id(), data)
		await self._notify(collection, [doc])
		return doc

	async def create(self, collection: str, doc_id: str, data: Dict[str, Any]) -> Document:
		"""Insert-only write; raises DocumentExistsError if the id is taken."""
		doc = await run_in_threadpool(self._insert, collection, doc_id, data)
		await self._notify(collection, [doc])
		return doc

	async def update(self, collection: str, doc_id: str, data: Dict[str, Any], *, expected_version: int) -> Document:
		"""Overwrite a document only if its stored version is ``expected_version``."""
		doc = await run_in_threadpool(self._conditional_update, collection, doc_id, data, expected_version)
		await self._notify(collection, [doc])
		return doc

	async def delete(self, collection: str, doc_id: str) -> bool:
		"""Remove a document. Returns False if there was nothing to remove."""
		removed = await run_in_threadpool(self._delete, collection, doc_id)
		if removed:
			await self._notify(collection, [Document(id=doc_id, data={}, deleted=True)])
		return removed

	async def subscribe(self, collection: str, callback: Subscriber) -> Callable[[], None]:
		"""Register ``callback`` and deliver the whole collection right away.

		Later calls receive only the documents touched by each write; removed
		documents arrive with ``deleted`` set.
		"""
		self._subscribers.setdefault(collection, []).append(callback)

		def unsubscribe() -> None:
			callbacks = self._subscribers.get(collection, [])
			if callback in callbacks:
				callbacks.remove(callback)

		await callback(await self.list(collection))
		return unsubscribe

	# ---- internals ----

	async def _notify(self, collection: str, changes: List[Document]) -> None:
		# Runs after the write has committed: a failing subscriber must not fail the writer
		for callback in list(self._subscribers.get(collection, ())):
			try:
				await callback(changes)
			except Exception:
				logger.exception("Subscriber for %s failed on change", collection)

	def _resolve(self, data: Dict[str, Any], now: datetime) -> Dict[str, Any]:
		stamp = now.isoformat()
		return {k: (stamp if v is SERVER_TIMESTAMP else v) for k, v in data.items()}

	@staticmethod
	def _to_document(row: DocumentRow) -> Document:
		return Document(
			id=row.doc_id,
			data=json.loads(row.data),
			version=row.version,
			created_at=row.created_at,
			updated_at=row.updated_at,
		)

	@staticmethod
	def _find(db: Session, collection: str, doc_id: str) -> Optional[DocumentRow]:
		return db.get(DocumentRow, (collection, doc_id))

	def _get(self, collection: str, doc_id: str) -> Optional[Document]:
		with self._session_factory() as db:
			row = self._find(db, collection, doc_id)
			return self._to_document(row) if row else None

	def _list(self, collection: str) -> List[Document]:
		with self._session_factory() as db:
			rows = db.execute(
				select(DocumentRow).where(DocumentRow.collection == collection).order_by(DocumentRow.created_at)
			).scalars().all()
			return [self._to_document(r) for r in rows]

	def _insert(self, collection: str, doc_id: str, data: Dict[str, Any]) -> Document:
		now = self._clock()
		payload = self._resolve(data, now)
		with self._session_factory() as db:
			row = DocumentRow(
				collection=collection,
				doc_id=doc_id,
				data=json.dumps(payload, ensure_ascii=False),
				version=1,
				created_at=now,
				updated_at=now,
			)
			db.add(row)
			try:
				db.commit()
			except IntegrityError as err:
				db.rollback()
				raise DocumentExistsError(f"{collection}/{doc_id} already exists") from err
			return self._to_document(row)

	def _conditional_update(self, collection: str, doc_id: str, data: Dict[str, Any], expected_version: int) -> Document:
		now = self._clock()
		payload = json.dumps(self._resolve(data, now), ensure_ascii=False)
		with self._session_factory() as db:
			res = db.execute(
				update(DocumentRow)
				.where(
					DocumentRow.collection == collection,
					DocumentRow.doc_id == doc_id,
					DocumentRow.version == expected_version,
				)
				.values(data=payload, version=DocumentRow.version + 1, updated_at=now)
			)
			if res.rowcount != 1:
				db.rollback()
				raise VersionConflictError(f"{collection}/{doc_id} is not at version {expected_version}")
			db.commit()
			row = self._find(db, collection, doc_id)
			return self._to_document(row)

	def _delete(self, collection: str, doc_id: str) -> bool:
		with self._session_factory() as db:
			res = db.execute(
				delete(DocumentRow).where(DocumentRow.collection == collection, DocumentRow.doc_id == doc_id)
			)
			db.commit()
			return res.rowcount == 1
