"""
Quiz engine core logic.
Handles question progression, answer locking, scoring and the per-question timer.
"""
import asyncio
import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

from trivia_quiz.models import AnswerRecord, QuestionRecord, QuizSession, QuizState, Summary
from trivia_quiz.results import ResultAggregator

# Set up logger for timer operations
logger = logging.getLogger(__name__)


class TimerLifecycleLogger:
    """Structured logging for timer lifecycle events."""

    @staticmethod
    def log_timer_start(session_id: str, question_index: int, duration: int) -> None:
        logger.debug(
            f"Timer lifecycle: COUNTDOWN_START - Session {session_id}, Question {question_index + 1}, Duration {duration}s",
            extra={
                'event_type': 'timer_countdown_start',
                'session_id': session_id,
                'question_index': question_index,
                'duration': duration,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_update(session_id: str, remaining_time: int, total_duration: int) -> None:
        """Log timer update events (throttled to avoid spam)."""
        if remaining_time % 10 == 0 or remaining_time <= 5:
            logger.debug(
                f"Timer lifecycle: UPDATE - Session {session_id}, Remaining {remaining_time}s of {total_duration}s",
                extra={
                    'event_type': 'timer_update',
                    'session_id': session_id,
                    'remaining_time': remaining_time,
                    'total_duration': total_duration,
                    'timestamp': time.time()
                }
            )

    @staticmethod
    def log_timer_completion(session_id: str, completion_type: str) -> None:
        """Log timer completion (natural expiry or cancellation)."""
        logger.info(
            f"Timer lifecycle: COMPLETED - Session {session_id}, Type {completion_type}",
            extra={
                'event_type': 'timer_completed',
                'session_id': session_id,
                'completion_type': completion_type,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_stale_tick(session_id: str, details: str) -> None:
        logger.warning(
            f"Timer lifecycle: STALE_TICK - Session {session_id}: {details}",
            extra={
                'event_type': 'timer_stale_tick',
                'session_id': session_id,
                'details': details,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_error(session_id: str, error_message: str) -> None:
        logger.error(
            f"Timer lifecycle: ERROR - Session {session_id}: {error_message}",
            extra={
                'event_type': 'timer_error',
                'session_id': session_id,
                'error_message': error_message,
                'timestamp': time.time()
            }
        )


class QuizTimer:
    """Countdown for a single question, run as one asyncio task."""

    def __init__(self, session_id: str = None, tick_interval: float = 1.0):
        self._task: Optional[asyncio.Task] = None
        self._remaining_time = 0
        self._is_cancelled = False
        self._session_id = session_id
        self._tick_interval = tick_interval

    def start(
        self,
        duration: int,
        update_callback: Callable[[int], Any],
        completion_callback: Callable[[], Any]
    ) -> None:
        """
        Schedule the countdown on the running event loop.

        Args:
            duration: Number of ticks before expiry
            update_callback: Awaited after each tick with the remaining time
            completion_callback: Awaited once when the countdown reaches zero
        """
        self._remaining_time = duration
        self._is_cancelled = False
        self._task = asyncio.get_running_loop().create_task(
            self._countdown(duration, update_callback, completion_callback)
        )

    async def _countdown(
        self,
        duration: int,
        update_callback: Callable[[int], Any],
        completion_callback: Callable[[], Any]
    ) -> None:
        try:
            while self._remaining_time > 0 and not self._is_cancelled:
                await asyncio.sleep(self._tick_interval)
                if self._is_cancelled:
                    break
                self._remaining_time -= 1
                TimerLifecycleLogger.log_timer_update(self._session_id, self._remaining_time, duration)
                await update_callback(self._remaining_time)

            if self._is_cancelled:
                TimerLifecycleLogger.log_timer_completion(self._session_id, "cancelled")
            else:
                TimerLifecycleLogger.log_timer_completion(self._session_id, "natural_expiry")
                await completion_callback()

        except asyncio.CancelledError:
            self._is_cancelled = True
            TimerLifecycleLogger.log_timer_completion(self._session_id, "asyncio_cancelled")
            raise
        except Exception as e:
            TimerLifecycleLogger.log_timer_error(self._session_id, str(e))
            raise

    def cancel(self) -> None:
        """Cancel the countdown; safe to call from inside its own callbacks."""
        self._is_cancelled = True
        if self._task is None or self._task.done():
            return
        # The running countdown stops itself once the flag is seen.
        if self._task is asyncio.current_task():
            return
        self._task.cancel()

    @property
    def is_cancelled(self) -> bool:
        return self._is_cancelled

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done() and not self._is_cancelled

    @property
    def remaining_time(self) -> int:
        return self._remaining_time


class QuizStateMachine:
    """
    Owns quiz progression: current question, score, lock and timer.

    Every operation is safe to call in any state. Calls that do not apply to
    the current state are ignored and return False.
    """

    def __init__(
        self,
        per_question_seconds: int = 30,
        timer_factory: Optional[Callable[[str], Any]] = None,
        on_update: Optional[Callable[[Dict[str, Any]], Any]] = None,
        on_complete: Optional[Callable[[Summary], Any]] = None
    ):
        """
        Args:
            per_question_seconds: Default time allowed per question
            timer_factory: Builds a timer for a session id; QuizTimer if None
            on_update: Called with progress() after every change
            on_complete: Called with the Summary when the quiz completes
        """
        self.per_question_seconds = per_question_seconds
        self._timer_factory = timer_factory or (lambda session_id: QuizTimer(session_id))
        self.aggregator = ResultAggregator()
        self.on_update = on_update
        self.on_complete = on_complete

        self.state = QuizState.IDLE
        self.session: Optional[QuizSession] = None
        self.summary: Optional[Summary] = None
        self._timer = None
        self._generation = 0

    # State transitions

    def begin_loading(self) -> bool:
        """Mark that questions are being fetched."""
        if self.state != QuizState.IDLE:
            logger.warning(f"Cannot begin loading from state {self.state.value}")
            return False
        self.state = QuizState.LOADING
        return True

    def start(self, questions: List[QuestionRecord], per_question_seconds: Optional[int] = None) -> bool:
        """
        Begin the quiz at the first question.

        Args:
            questions: Questions to ask, in order
            per_question_seconds: Overrides the default time per question

        Returns:
            True if the quiz started
        """
        if self.state not in (QuizState.IDLE, QuizState.LOADING):
            logger.warning(f"Cannot start quiz from state {self.state.value}")
            return False
        if not questions:
            logger.warning("Cannot start quiz without questions")
            return False

        if per_question_seconds is not None:
            self.per_question_seconds = per_question_seconds

        self.aggregator = ResultAggregator()
        self.summary = None
        self.session = QuizSession(
            session_id=uuid.uuid4().hex[:8],
            questions=list(questions),
            per_question_seconds=self.per_question_seconds
        )
        self.state = QuizState.ACTIVE

        logger.info(
            f"Quiz {self.session.session_id} started with {len(questions)} questions",
            extra={
                'event_type': 'quiz_started',
                'session_id': self.session.session_id,
                'total_questions': len(questions),
                'timestamp': time.time()
            }
        )
        self._start_timer()
        self._notify_update()
        return True

    def submit_answer(self, selected: Optional[str] = None) -> bool:
        """
        Record the answer for the current question and lock it.

        Args:
            selected: Chosen option, or None when nothing was chosen

        Returns:
            True if an answer was recorded, False if the question was already locked
        """
        if self.state != QuizState.ACTIVE or self.session.locked:
            logger.debug("Ignoring submission: no unlocked question")
            return False

        self._stop_timer()

        question = self.session.current_question
        record = AnswerRecord(
            question_text=question.question_text,
            user_answer=selected,
            correct_answer=question.correct_answer,
            is_correct=selected is not None and selected == question.correct_answer
        )
        self.aggregator.record(self.session, record)
        self.session.locked = True

        if selected is None:
            logger.info(f"Question {self.session.current_index + 1} recorded as unanswered")
        else:
            logger.debug(f"Question {self.session.current_index + 1} answered, correct={record.is_correct}")

        self._notify_update()
        return True

    def on_timer_expire(self) -> bool:
        """Submit an empty answer if the current question is still open."""
        if self.state != QuizState.ACTIVE or self.session.locked:
            return False
        logger.info(f"Time expired on question {self.session.current_index + 1}")
        return self.submit_answer(None)

    def advance(self) -> bool:
        """
        Move to the next question, or complete the quiz after the last one.

        Returns:
            True if the quiz moved forward
        """
        if self.state != QuizState.ACTIVE or not self.session.locked:
            logger.debug("Ignoring advance: current question not submitted")
            return False

        self._stop_timer()

        if self.session.is_last_question:
            self.state = QuizState.COMPLETED
            self.summary = self.aggregator.finalize(self.session)
            logger.info(
                f"Quiz {self.session.session_id} completed: {self.summary.score}/{self.summary.total} "
                f"({self.summary.percent}%)",
                extra={
                    'event_type': 'quiz_completed',
                    'session_id': self.session.session_id,
                    'score': self.summary.score,
                    'total': self.summary.total,
                    'timestamp': time.time()
                }
            )
            self._notify_update()
            self._notify_complete()
            return True

        self.session.current_index += 1
        self.session.locked = False
        self._start_timer()
        self._notify_update()
        return True

    def reset(self) -> None:
        """Return to idle, dropping all progress."""
        self._stop_timer()
        self.state = QuizState.IDLE
        self.session = None
        self.summary = None
        self.aggregator = ResultAggregator()
        logger.debug("Quiz state reset")

    # Presentation outputs

    def current_question(self) -> Optional[Dict[str, Any]]:
        """Question text and options for display, or None outside a quiz."""
        if self.state != QuizState.ACTIVE:
            return None
        question = self.session.current_question
        return {
            'question_text': question.question_text,
            'options': list(question.options)
        }

    def progress(self) -> Optional[Dict[str, Any]]:
        if self.session is None:
            return None
        return {
            'current_index': self.session.current_index,
            'total': self.session.total,
            'time_remaining': self.session.time_remaining,
            'score': self.session.score,
            'locked': self.session.locked,
            'state': self.state.value
        }

    @property
    def answers(self) -> Tuple[AnswerRecord, ...]:
        if self.session is None:
            return ()
        return tuple(self.session.answers)

    @property
    def is_locked(self) -> bool:
        return self.session is not None and self.session.locked

    # Timer handling

    def _start_timer(self) -> None:
        self._stop_timer()
        self._generation += 1
        generation = self._generation
        session = self.session
        session.time_remaining = session.per_question_seconds

        async def on_tick(remaining: int) -> None:
            if not self._is_current(generation):
                TimerLifecycleLogger.log_stale_tick(session.session_id, f"tick for superseded question {generation}")
                return
            session.time_remaining = max(0, remaining)
            self._notify_update()

        async def on_expire() -> None:
            if not self._is_current(generation):
                TimerLifecycleLogger.log_stale_tick(session.session_id, f"expiry for superseded question {generation}")
                return
            self.on_timer_expire()

        timer = self._timer_factory(session.session_id)
        self._timer = timer
        TimerLifecycleLogger.log_timer_start(session.session_id, session.current_index, session.time_remaining)
        try:
            timer.start(session.time_remaining, on_tick, on_expire)
        except RuntimeError as e:
            # No running event loop; the question stays open until answered.
            TimerLifecycleLogger.log_timer_error(session.session_id, f"Could not start timer: {e}")
            self._timer = None

    def _stop_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._generation += 1

    def _is_current(self, generation: int) -> bool:
        return (
            generation == self._generation and
            self.state == QuizState.ACTIVE and
            not self.session.locked
        )

    def _notify_update(self) -> None:
        if self.on_update is None:
            return
        try:
            self.on_update(self.progress())
        except Exception as e:
            logger.error(f"Progress listener failed: {e}")

    def _notify_complete(self) -> None:
        if self.on_complete is None:
            return
        try:
            self.on_complete(self.summary)
        except Exception as e:
            logger.error(f"Completion listener failed: {e}")
