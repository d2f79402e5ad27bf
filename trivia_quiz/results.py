"""
Answer collection and final scoring.
"""
import logging
import math
from typing import List, Optional, Tuple

from trivia_quiz.models import AnswerRecord, QuizSession, Summary


logger = logging.getLogger(__name__)


def percent_of(score: int, total: int) -> int:
    """Whole percentage, halves rounded up."""
    if total <= 0:
        return 0
    return int(math.floor(100 * score / total + 0.5))


class ResultAggregator:
    """Accumulates answer records and produces the quiz summary."""

    def __init__(self):
        self._summary: Optional[Summary] = None
        self._answers: Tuple[AnswerRecord, ...] = ()

    def record(self, session: QuizSession, answer: AnswerRecord) -> None:
        """
        Add the answer for the session's current question.

        Args:
            session: Session the answer belongs to
            answer: Record created at submission time
        """
        if self._summary is not None:
            logger.warning("Ignoring answer recorded after the quiz was finalized")
            return

        session.answers.append(answer)
        if answer.is_correct:
            session.score += 1

    def finalize(self, session: QuizSession) -> Summary:
        """
        Compute the final summary once; later calls return the same result.

        Args:
            session: Completed session

        Returns:
            Summary with score, total and percentage
        """
        if self._summary is not None:
            return self._summary

        total = len(session.questions)
        self._summary = Summary(
            score=session.score,
            total=total,
            percent=percent_of(session.score, total)
        )
        self._answers = tuple(session.answers)
        return self._summary

    @property
    def summary(self) -> Optional[Summary]:
        return self._summary

    @property
    def answers(self) -> Tuple[AnswerRecord, ...]:
        """Answers frozen at finalization, for review and export."""
        return self._answers

    def review_rows(self) -> List[dict]:
        """Finalized answers as plain rows, numbered from 1."""
        return [
            {
                'number': i + 1,
                'question': answer.question_text,
                'your_answer': answer.user_answer,
                'correct_answer': answer.correct_answer,
                'is_correct': answer.is_correct
            }
            for i, answer in enumerate(self._answers)
        ]
