"""
Built-in questions used when the question bank cannot be reached.
"""
import logging
import random
from typing import List, Optional

from trivia_quiz.models import QuestionRecord


logger = logging.getLogger(__name__)


FALLBACK_QUESTIONS = [
    {
        "question": "Which keyword defines a function in Python?",
        "correct_answer": "def",
        "incorrect_answers": ["func", "function", "lambda"]
    },
    {
        "question": "What is 2 ** 3 in Python?",
        "correct_answer": "8",
        "incorrect_answers": ["6", "9", "23"]
    },
    {
        "question": "Which planet is known as the Red Planet?",
        "correct_answer": "Mars",
        "incorrect_answers": ["Venus", "Jupiter", "Mercury"]
    }
]


class FallbackQuestionProvider:
    """Supplies a small fixed question set shaped like bank questions."""

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng if rng is not None else random.Random()

    def get_fallback(self) -> List[QuestionRecord]:
        """
        Build the fallback questions with freshly shuffled options.

        Returns:
            List of QuestionRecord
        """
        questions = []
        for item in FALLBACK_QUESTIONS:
            options = [item["correct_answer"]] + list(item["incorrect_answers"])
            self._rng.shuffle(options)
            questions.append(QuestionRecord(
                question_text=item["question"],
                correct_answer=item["correct_answer"],
                options=tuple(options),
                source_payload=item
            ))

        logger.warning(f"Using {len(questions)} built-in fallback questions")
        return questions
