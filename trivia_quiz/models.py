"""
Core data models for the trivia quiz.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Tuple


QUESTION_TYPE_MULTIPLE = "multiple"


class Difficulty(Enum):
    """Difficulty filter accepted by the question bank."""
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class QuizState(Enum):
    """Enumeration of quiz progression states."""
    IDLE = "idle"
    LOADING = "loading"
    ACTIVE = "active"
    COMPLETED = "completed"


@dataclass(frozen=True)
class QuestionRecord:
    """A single multiple-choice question with a fixed option order."""
    question_text: str
    correct_answer: str
    options: Tuple[str, ...]
    source_payload: Any = None


@dataclass
class QuizParameters:
    """Parameters for requesting a quiz from the question bank."""
    amount: int = 10
    category: Optional[int] = None
    difficulty: Optional[Difficulty] = None
    per_question_seconds: int = 30
    question_type: str = field(default=QUESTION_TYPE_MULTIPLE, init=False)

    MIN_AMOUNT = 1
    MAX_AMOUNT = 50
    MIN_SECONDS = 1
    MAX_SECONDS = 300  # 5 minutes

    def validate(self) -> List[str]:
        """
        Check the parameters before they are sent anywhere.

        Returns:
            List of issue descriptions, empty when the parameters are usable
        """
        issues = []

        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            issues.append(f"Amount must be an integer, got {type(self.amount).__name__}")
        elif not self.MIN_AMOUNT <= self.amount <= self.MAX_AMOUNT:
            issues.append(f"Amount must be between {self.MIN_AMOUNT} and {self.MAX_AMOUNT}, got {self.amount}")

        if self.category is not None:
            if isinstance(self.category, bool) or not isinstance(self.category, int) or self.category < 1:
                issues.append(f"Invalid category: {self.category!r}")

        if self.difficulty is not None and not isinstance(self.difficulty, Difficulty):
            issues.append(f"Invalid difficulty: {self.difficulty!r}")

        if (isinstance(self.per_question_seconds, bool) or
                not isinstance(self.per_question_seconds, int) or
                not self.MIN_SECONDS <= self.per_question_seconds <= self.MAX_SECONDS):
            issues.append(
                f"Per-question time must be between {self.MIN_SECONDS} and {self.MAX_SECONDS} seconds, "
                f"got {self.per_question_seconds!r}"
            )

        return issues


@dataclass(frozen=True)
class AnswerRecord:
    """The outcome of one question, created once at submission time."""
    question_text: str
    user_answer: Optional[str]
    correct_answer: str
    is_correct: bool


@dataclass(frozen=True)
class Summary:
    """Final score of a completed quiz."""
    score: int
    total: int
    percent: int


@dataclass
class QuizSession:
    """Progress of the quiz currently owned by the state machine."""
    session_id: str
    questions: List[QuestionRecord]
    per_question_seconds: int
    current_index: int = 0
    score: int = 0
    answers: List[AnswerRecord] = field(default_factory=list)
    locked: bool = False
    time_remaining: int = 0

    @property
    def total(self) -> int:
        return len(self.questions)

    @property
    def current_question(self) -> Optional[QuestionRecord]:
        if 0 <= self.current_index < len(self.questions):
            return self.questions[self.current_index]
        return None

    @property
    def is_last_question(self) -> bool:
        return self.current_index >= len(self.questions) - 1
