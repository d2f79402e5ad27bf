"""
Quiz controller.
Loads questions from the bank, falls back to built-in questions on failure,
and drives the quiz state machine for the presentation layer.
"""
import logging
import time
from typing import Any, Dict, Optional

from trivia_quiz.fallback import FallbackQuestionProvider
from trivia_quiz.models import QuizParameters, QuizState
from trivia_quiz.question_bank import QuestionBankClient, QuestionBankError
from trivia_quiz.quiz_engine import QuizStateMachine


class QuizController:
    """
    Orchestrates one quiz at a time.

    A fetch failure is never fatal: the error becomes a user-facing notice and
    the quiz runs on the fallback questions instead.
    """

    def __init__(
        self,
        client: QuestionBankClient,
        fallback_provider: Optional[FallbackQuestionProvider] = None,
        state_machine: Optional[QuizStateMachine] = None
    ):
        """
        Initialize the quiz controller.

        Args:
            client: Question bank client used to fetch questions
            fallback_provider: Source of substitute questions
            state_machine: Quiz progression owner, a default one is created if None
        """
        self.logger = logging.getLogger(__name__)
        self.client = client
        self.fallback_provider = fallback_provider or FallbackQuestionProvider()
        self.state_machine = state_machine or QuizStateMachine()
        self.last_notice: Optional[str] = None

    async def load_quiz(self, params: QuizParameters) -> Dict[str, Any]:
        """
        Fetch questions, substituting the fallback set if the fetch fails.

        Args:
            params: Requested quiz parameters

        Returns:
            Dictionary with success flag, questions, fallback flag, error and user message
        """
        started = time.time()
        try:
            questions = await self.client.fetch_questions(params)
        except QuestionBankError as e:
            self.logger.warning(
                f"Question fetch failed, using fallback questions: {e}",
                extra={
                    'event_type': 'quiz_load_fallback',
                    'error_type': type(e).__name__,
                    'timestamp': time.time()
                }
            )
            return {
                'success': False,
                'questions': self.fallback_provider.get_fallback(),
                'fallback': True,
                'error': str(e),
                'user_message': f"⚠️ Failed to fetch questions: {e}"
            }

        self.logger.info(
            f"Loaded {len(questions)} questions in {time.time() - started:.2f}s",
            extra={'event_type': 'quiz_loaded', 'count': len(questions), 'timestamp': time.time()}
        )
        return {
            'success': True,
            'questions': questions,
            'fallback': False,
            'error': None,
            'user_message': f"✅ Loaded {len(questions)} questions"
        }

    async def start_quiz(self, params: QuizParameters) -> Dict[str, Any]:
        """
        Load questions and start the quiz at the first question.

        Returns:
            The load_quiz result extended with 'started'
        """
        if self.state_machine.state != QuizState.IDLE:
            self.state_machine.reset()

        self.state_machine.begin_loading()
        result = await self.load_quiz(params)
        self.last_notice = result['user_message'] if result['fallback'] else None

        per_question_seconds = params.per_question_seconds
        if (isinstance(per_question_seconds, bool) or
                not isinstance(per_question_seconds, int) or
                not QuizParameters.MIN_SECONDS <= per_question_seconds <= QuizParameters.MAX_SECONDS):
            per_question_seconds = self.state_machine.per_question_seconds

        result['started'] = self.state_machine.start(result['questions'], per_question_seconds)
        return result

    def submit_answer(self, selected: Optional[str] = None) -> bool:
        return self.state_machine.submit_answer(selected)

    def advance(self) -> bool:
        return self.state_machine.advance()

    def restart(self) -> None:
        """Drop the current quiz so a new one can be started."""
        self.state_machine.reset()
        self.last_notice = None

    def get_status_summary(self) -> str:
        """
        Get a one-line description of quiz progress.

        Returns:
            Human-readable status string
        """
        machine = self.state_machine
        if machine.state == QuizState.IDLE:
            return "No quiz in progress"
        if machine.state == QuizState.LOADING:
            return "Loading questions..."
        if machine.state == QuizState.COMPLETED:
            summary = machine.summary
            return f"Your score: {summary.score} / {summary.total} ({summary.percent}%)"

        progress = machine.progress()
        return (
            f"Q {progress['current_index'] + 1} / {progress['total']} | "
            f"{progress['time_remaining']}s left | score {progress['score']}"
        )
