from __future__ import annotations
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, Integer, Text, PrimaryKeyConstraint
from .db import Base


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


class DocumentRow(Base):
	__tablename__ = "documents"
	# Collection path (e.g. artifacts/<app_id>/public/data/verifications) + generated id
	collection = Column(String(256), nullable=False, index=True)
	doc_id = Column(String(64), nullable=False)
	data = Column(Text, nullable=False)  # JSON object
	# Bumped on every write; conditional updates compare against it
	version = Column(Integer, default=1, nullable=False)
	created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
	updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

	__table_args__ = (PrimaryKeyConstraint("collection", "doc_id"),)


class AuthSession(Base):
	__tablename__ = "auth_sessions"
	session_id = Column(String(64), primary_key=True)
	# Anonymous uid carried in the token's "sub" claim
	uid = Column(String(64), nullable=False, index=True)
	created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
	last_activity_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
