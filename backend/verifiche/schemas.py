"""Document shapes shared by the generator, the grading engine and the routers.

Documents are stored with camelCase keys (``correctAnswer``, ``studentName``);
the models accept either spelling and dump with aliases.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


Number = Union[int, float]


class QuestionType(str, Enum):
	MULTIPLE_CHOICE = "multiple-choice"
	CLOSED = "closed"
	OPEN = "open"
	PRACTICAL = "practical"

	@classmethod
	def parse(cls, value: Any) -> Optional["QuestionType"]:
		try:
			return cls(str(value).strip().lower())
		except ValueError:
			return None


class Complexity(str, Enum):
	BASE = "Base"
	INTERMEDIA = "Intermedia"
	AVANZATA = "Avanzata"


class VerificationStatus(str, Enum):
	PENDING = "pending"
	SUBMITTED = "submitted"


class DocumentModel(BaseModel):
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

	def to_document(self) -> Dict[str, Any]:
		return self.model_dump(by_alias=True, mode="json")


class Question(DocumentModel):
	id: int
	text: str
	# Kept as the raw string: unknown types are graded as unsupported, not rejected
	type: str
	points: Number
	correct_answer: str = ""
	options: List[str] = Field(default_factory=list)
	image: Optional[str] = None

	@field_validator("points")
	@classmethod
	def _positive_points(cls, value: Number) -> Number:
		if value <= 0:
			raise ValueError("points must be positive")
		return value

	@field_validator("text", "type", "correct_answer", mode="before")
	@classmethod
	def _as_text(cls, value: Any) -> Any:
		if value is None:
			return ""
		if isinstance(value, (int, float)):
			return str(value)
		return value

	@field_validator("options", mode="before")
	@classmethod
	def _as_option_list(cls, value: Any) -> Any:
		if value is None:
			return []
		if isinstance(value, list):
			return [str(o) for o in value]
		return value

	@property
	def kind(self) -> Optional[QuestionType]:
		return QuestionType.parse(self.type)


class RubricBand(BaseModel):
	min: int
	max: int
	label: str


class QuizContent(BaseModel):
	rubric: Dict[str, str]
	questions: List[Question] = Field(min_length=1, max_length=20)

	@field_validator("rubric", mode="before")
	@classmethod
	def _labels_as_text(cls, value: Any) -> Any:
		if isinstance(value, dict):
			return {str(k): str(v) for k, v in value.items()}
		return value


class CorrectedAnswer(DocumentModel):
	question_id: int
	answer: str
	is_correct: bool
	score: Number
	max_points: Number
	comment: str


class GradingResult(DocumentModel):
	total_score: Number
	max_score: Number
	percentage: float
	final_grade: str
	corrected_answers: List[CorrectedAnswer]


class Verification(DocumentModel):
	quiz_id: str
	teacher_id: Optional[str] = None
	student_name: str
	class_name: str = Field(default="", alias="class")
	date: str = ""
	unique_code: str
	password_hash: str
	status: VerificationStatus = VerificationStatus.PENDING
	questions: List[Question]
	rubric: Dict[str, str] = Field(default_factory=dict)
	creation_date: Optional[str] = None
