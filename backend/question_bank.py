import re
import json
import logging
from collections.abc import Sequence
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

import config
from errors import QuestionBankError

logger = logging.getLogger(__name__)

LABELS = ("A", "B", "C", "D")

MAX_QUESTION_TEXT_LENGTH = 2000
MAX_OPTION_LENGTH = 500


def _sanitize_text(text: str) -> str:
    """Strip HTML tags and control characters from question text."""
    text = re.sub(r'<[^>]+>', '', text)
    text = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', text)
    return text.strip()


class Question(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    options: tuple[str, str, str, str]
    correct_label: str
    base_points: int = Field(default=10, gt=0)

    @field_validator('text')
    @classmethod
    def validate_text(cls, v: str) -> str:
        v = _sanitize_text(v)[:MAX_QUESTION_TEXT_LENGTH]
        if not v:
            raise ValueError('Question text must not be empty')
        return v

    @field_validator('options', mode='before')
    @classmethod
    def validate_options(cls, v):
        if not isinstance(v, (list, tuple)):
            raise ValueError('Options must be a list')
        if len(v) != len(LABELS):
            raise ValueError(f'Question must have exactly {len(LABELS)} options')
        cleaned = []
        for opt in v:
            if not isinstance(opt, str):
                raise ValueError('Each option must be a string')
            opt = _sanitize_text(opt)[:MAX_OPTION_LENGTH]
            if not opt:
                raise ValueError('Options must not be empty')
            cleaned.append(opt)
        return tuple(cleaned)

    @field_validator('correct_label')
    @classmethod
    def validate_correct_label(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in LABELS:
            raise ValueError(f'correct_label must be one of: {", ".join(LABELS)}')
        return v

    def is_correct(self, label: str) -> bool:
        return label == self.correct_label

    def player_view(self) -> dict:
        """Question text and options only; never the answer."""
        return {"question": self.text, "options": list(self.options)}

    def host_view(self) -> dict:
        view = self.player_view()
        view["correct_label"] = self.correct_label
        view["base_points"] = self.base_points
        return view


class QuestionBank(Sequence):
    """Immutable, ordered set of questions for one server process."""

    def __init__(self, questions: Iterable[Question]):
        self._questions = tuple(questions)
        if not self._questions:
            raise QuestionBankError("Question bank must contain at least 1 question")

    def __len__(self) -> int:
        return len(self._questions)

    def __getitem__(self, index):
        return self._questions[index]

    def is_last(self, index: int) -> bool:
        return index >= len(self._questions) - 1


DEFAULT_QUESTIONS = [
    {
        "text": "What is the first book of the Bible?",
        "options": ["A. Exodus", "B. Genesis", "C. Leviticus", "D. Numbers"],
        "correct_label": "B",
        "base_points": 10,
    },
    {
        "text": "Who was swallowed by a great fish?",
        "options": ["A. Elijah", "B. Jonah", "C. Moses", "D. Peter"],
        "correct_label": "B",
        "base_points": 10,
    },
    {
        "text": "How many days and nights did it rain during the flood?",
        "options": ["A. 7 days and 7 nights", "B. 20 days and 20 nights",
                    "C. 40 days and 40 nights", "D. 3 days and 3 nights"],
        "correct_label": "C",
        "base_points": 10,
    },
    {
        "text": "What garden did Adam and Eve live in?",
        "options": ["A. Eden", "B. Gethsemane", "C. Zion", "D. Damascus"],
        "correct_label": "A",
        "base_points": 10,
    },
    {
        "text": "Who led the Israelites out of Egypt?",
        "options": ["A. Abraham", "B. Joshua", "C. Moses", "D. David"],
        "correct_label": "C",
        "base_points": 10,
    },
]


def build_question_bank(records: list) -> QuestionBank:
    questions = []
    for i, record in enumerate(records):
        try:
            questions.append(Question.model_validate(record))
        except ValidationError as exc:
            logger.warning("Question %d is invalid: %s", i + 1, exc.errors())
            raise QuestionBankError(f"Question {i + 1} is invalid") from exc
    return QuestionBank(questions)


def load_question_bank(path: str) -> QuestionBank:
    """Load questions from a JSON file: ``{"questions": [...]}`` or a bare list."""
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except OSError as exc:
        raise QuestionBankError(f"Cannot read question bank {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise QuestionBankError(f"Question bank {path} is not valid JSON: {exc}") from exc

    records = data.get("questions") if isinstance(data, dict) else data
    if not isinstance(records, list):
        raise QuestionBankError(f"Question bank {path} has no 'questions' list")

    bank = build_question_bank(records)
    logger.info("Loaded %d questions from %s", len(bank), path)
    return bank


def get_question_bank(path: Optional[str] = None) -> QuestionBank:
    path = config.QUESTION_BANK_FILE if path is None else path
    if path:
        return load_question_bank(path)
    return build_question_bank(DEFAULT_QUESTIONS)
