"""Teacher dashboard: verifications joined with their results.

The view subscribes to the public verifications and results collections.
Every batch of verifications it receives triggers one result lookup per
verification in the batch; the lookups run concurrently and a failing one
only blanks the result of its own row. A lookup that finishes after a newer
batch has touched the same verification is dropped. Results that arrive on
the results feed are joined in directly and spare later lookups.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from .documents import Document, DocumentStore


logger = logging.getLogger(__name__)


class DashboardView:
	def __init__(self, store: DocumentStore, verifications_path: str, results_path: str) -> None:
		self._store = store
		self._verifications_path = verifications_path
		self._results_path = results_path
		self._rows: Dict[str, Dict[str, Any]] = {}
		# Result data by verification id, as last seen on the results feed
		self._results: Dict[str, Optional[Dict[str, Any]]] = {}
		self._generation = 0
		self._touched: Dict[str, int] = {}
		self._unsubscribers: List[Callable[[], None]] = []

	async def start(self) -> None:
		if self._unsubscribers:
			return
		self._unsubscribers.append(await self._store.subscribe(self._verifications_path, self.on_snapshot))
		self._unsubscribers.append(await self._store.subscribe(self._results_path, self.on_results))

	def stop(self) -> None:
		while self._unsubscribers:
			self._unsubscribers.pop()()

	@property
	def generation(self) -> int:
		return self._generation

	def rows(self, teacher_id: Optional[str] = None) -> List[Dict[str, Any]]:
		rows = sorted(self._rows.values(), key=lambda r: r.get("creationDate") or "", reverse=True)
		if teacher_id is None:
			return rows
		return [r for r in rows if r.get("teacherId") == teacher_id]

	async def on_snapshot(self, verifications: List[Document]) -> None:
		self._generation += 1
		generation = self._generation
		for doc in verifications:
			self._touched[doc.id] = generation
		rows = await asyncio.gather(*(self._enrich(doc) for doc in verifications))
		dropped = 0
		for doc, row in zip(verifications, rows):
			if self._touched.get(doc.id) != generation:
				dropped += 1
				continue
			if doc.deleted:
				self._rows.pop(doc.id, None)
				continue
			if doc.id in self._results:
				row["result"] = self._results[doc.id]
			self._rows[doc.id] = row
		if dropped:
			logger.debug("Dropped %s stale dashboard rows from refresh %s", dropped, generation)

	async def on_results(self, results: List[Document]) -> None:
		for doc in results:
			data = None if doc.deleted else doc.data
			self._results[doc.id] = data
			row = self._rows.get(doc.id)
			if row is not None:
				row["result"] = data

	async def _enrich(self, doc: Document) -> Dict[str, Any]:
		row = doc.to_dict()
		row.pop("passwordHash", None)
		if doc.deleted or doc.id in self._results:
			row["result"] = self._results.get(doc.id)
			return row
		try:
			result = await self._store.get(self._results_path, doc.id)
		except Exception:
			logger.exception("Failed to fetch result for verification %s", doc.id)
			result = None
		row["result"] = result.data if result is not None else None
		return row
