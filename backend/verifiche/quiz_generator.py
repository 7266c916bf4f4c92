from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from .gemini_client import GeminiClient
from .schemas import Complexity, QuizContent


logger = logging.getLogger(__name__)

MAX_QUESTIONS = 20

QUIZ_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "rubric": {
            "type": "OBJECT",
            "description": "La griglia di valutazione che converte il punteggio totale (0-100) in voto e giudizio.",
        },
        "questions": {
            "type": "ARRAY",
            "description": f"L'array di domande (max {MAX_QUESTIONS})",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "id": {"type": "NUMBER"},
                    "text": {"type": "STRING", "description": "Il testo della domanda."},
                    "type": {
                        "type": "STRING",
                        "enum": ["multiple-choice", "open", "closed", "practical"],
                        "description": "Il tipo di domanda.",
                    },
                    "points": {"type": "NUMBER", "description": "Punteggio massimo per questa domanda."},
                    "correctAnswer": {
                        "type": "STRING",
                        "description": "La risposta corretta per MC/Closed, o un suggerimento per la correzione per Open/Practical.",
                    },
                    "options": {"type": "ARRAY", "items": {"type": "STRING"}, "description": "Opzioni per MC (vuoto altrimenti)."},
                    "image": {"type": "STRING", "description": "Link a placeholder immagine se necessario (es: https://placehold.co/300x200)."},
                },
                "required": ["id", "text", "type", "points", "correctAnswer"],
            },
        },
    },
    "required": ["rubric", "questions"],
}

_FENCE = re.compile(r"```(?:json)?")


class QuizGenerationError(Exception):
    pass


def _system_prompt(topic: str) -> str:
    return (
        f'Sei un esperto creatore di verifiche di Informatica. Genera un JSON per una verifica dettagliata su "{topic}". '
        f"La verifica deve essere complessa, articolata e contenere al massimo {MAX_QUESTIONS} domande "
        "(mix di risposta multipla, aperta e pratiche non-codice). Deve essere completabile in 1 ora. "
        "Inserisci immagini rilevanti come link a placeholder. Assegna punti per ogni domanda (Max totale 100).\n\n"
        "DEVI usare questo schema JSON. L'italiano DEVE essere l'unica lingua usata nel testo.\n\n"
        "Schema per la Rubrica: La rubrica deve convertire il punteggio totale (su 100) in un voto in decimi con un giudizio.\n"
        'Esempio: {"0-50": "Insufficiente (4)", "51-65": "Sufficiente (6)", "66-75": "Discreto (7)", '
        '"76-85": "Buono (8)", "86-95": "Ottimo (9)", "96-100": "Eccellente (10)"}.'
    )


def _user_prompt(topic: str, complexity: Complexity) -> str:
    return (
        f'Crea una verifica di {complexity.value} complessità sul tema "{topic}". '
        "Includi domande teoriche, pratiche e link a immagini placeholder (es: https://placehold.co/300x200). "
        "Genera la Rubrica e l'array di domande completo."
    )


def strip_fences(text: str) -> str:
    return _FENCE.sub("", text).strip()


def parse_quiz_content(text: Optional[str]) -> QuizContent:
    if not text or not text.strip():
        raise QuizGenerationError("Empty response from the content generator.")
    try:
        data = json.loads(strip_fences(text))
    except json.JSONDecodeError as err:
        raise QuizGenerationError(f"Content generator did not return valid JSON: {err}") from err
    if not isinstance(data, dict):
        raise QuizGenerationError("Content generator returned JSON that is not an object.")
    try:
        return QuizContent.model_validate(data)
    except ValidationError as err:
        raise QuizGenerationError(f"Quiz content does not match the expected schema: {err}") from err


class QuizGenerator:
    """Asks Gemini for the rubric and question list of a new quiz."""

    def __init__(self, client: Optional[GeminiClient] = None) -> None:
        self._client = client

    async def generate(self, topic: str, complexity: Complexity) -> QuizContent:
        topic = (topic or "").strip()
        if not topic:
            raise QuizGenerationError("topic is required")
        try:
            client = self._client or GeminiClient()
        except ValueError as err:
            raise QuizGenerationError(str(err)) from err
        try:
            text = await client.generate(
                _user_prompt(topic, complexity),
                system_instruction=_system_prompt(topic),
                response_schema=QUIZ_SCHEMA,
            )
        except (httpx.HTTPError, RuntimeError) as err:
            logger.warning("Quiz generation for %r failed: %s", topic, err)
            raise QuizGenerationError(f"API error: {err}") from err
        finally:
            if self._client is None:
                await client.aclose()
        return parse_quiz_content(text)
