from __future__ import annotations

import random
from typing import Callable, Iterator, Optional

from fastapi import Depends, Request
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .dashboard import DashboardView
from .db import init_db, make_session_factory
from .documents import DocumentStore, public_results, public_verifications, teacher_quizzes
from .quiz_generator import QuizGenerator


class AppState:
	"""Everything the routers share, hung on ``app.state.ctx`` at startup."""

	def __init__(
		self,
		session_factory: sessionmaker,
		*,
		app_id: str,
		public_base_url: str,
		generator_factory: Callable[[], QuizGenerator] = QuizGenerator,
		rng: Optional[random.Random] = None,
	) -> None:
		self.session_factory = session_factory
		self.app_id = app_id
		self.public_base_url = public_base_url
		self.generator_factory = generator_factory
		# Only used for shuffling; passwords come from the secrets module
		self.rng = rng or random.Random()
		self.store = DocumentStore(session_factory)
		self.dashboard = DashboardView(self.store, self.verifications_path, self.results_path)

	@classmethod
	def from_engine(cls, engine: Engine, **kwargs) -> "AppState":
		init_db(engine)
		return cls(make_session_factory(engine), **kwargs)

	@property
	def verifications_path(self) -> str:
		return public_verifications(self.app_id)

	@property
	def results_path(self) -> str:
		return public_results(self.app_id)

	def quizzes_path(self, uid: str) -> str:
		return teacher_quizzes(self.app_id, uid)

	def student_link(self, verification_id: str) -> str:
		return f"{self.public_base_url}?vId={verification_id}"

	async def start(self) -> None:
		await self.dashboard.start()

	def stop(self) -> None:
		self.dashboard.stop()


def get_app_state(request: Request) -> AppState:
	return request.app.state.ctx


def get_db(state: AppState = Depends(get_app_state)) -> Iterator[Session]:
	db = state.session_factory()
	try:
		yield db
	finally:
		db.close()
