"""
Client for the remote trivia question bank.
Handles session tokens, retries with backoff and response code routing.
"""
import asyncio
import html
import logging
import random
import time
from typing import Any, Dict, List, Optional

import aiohttp

from trivia_quiz.models import QuestionRecord, QuizParameters
from trivia_quiz.token_store import SessionTokenStore


DEFAULT_API_URL = "https://opentdb.com/api.php"
DEFAULT_TOKEN_URL = "https://opentdb.com/api_token.php"

logger = logging.getLogger(__name__)


class QuestionBankError(Exception):
    """Base exception for question acquisition failures."""
    pass


class TokenError(QuestionBankError):
    """Raised when a session token cannot be issued or reset."""
    pass


class InsufficientQuestionsError(QuestionBankError):
    """Raised when the bank has fewer questions than requested for the filters."""
    pass


class InvalidParametersError(QuestionBankError):
    """Raised when the quiz parameters are rejected."""
    pass


class EmptyResultError(QuestionBankError):
    """Raised when the bank reports success but returns no usable questions."""
    pass


class FetchExhaustedError(QuestionBankError):
    """Raised when every fetch attempt has been used up."""
    pass


class ResponseCode:
    """Response codes returned by the question bank."""
    SUCCESS = 0
    NO_RESULTS = 1
    INVALID_PARAMETER = 2
    TOKEN_NOT_FOUND = 3
    TOKEN_EMPTY = 4


TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, ValueError)


def decode_text(text: str) -> str:
    """Decode HTML entities the bank uses in question and answer text."""
    return html.unescape(text)


def normalize_question(item: Dict[str, Any], rng: random.Random) -> QuestionRecord:
    """
    Turn one raw bank item into a QuestionRecord.

    Args:
        item: Raw result entry with question, correct_answer and incorrect_answers
        rng: Random source used to shuffle the options

    Returns:
        QuestionRecord with decoded text and shuffled options

    Raises:
        ValueError: If the item cannot produce a valid question
    """
    try:
        question_text = decode_text(item["question"])
        correct_answer = decode_text(item["correct_answer"])
        incorrect = [decode_text(answer) for answer in item["incorrect_answers"]]
    except (KeyError, TypeError, AttributeError) as e:
        raise ValueError(f"Malformed question item: {e!r}") from e

    if correct_answer in incorrect:
        raise ValueError(f"Correct answer repeated among incorrect answers: {question_text!r}")

    options = [correct_answer] + incorrect
    if not 2 <= len(options) <= 4:
        raise ValueError(f"Question has {len(options)} options, expected 2 to 4: {question_text!r}")

    rng.shuffle(options)

    return QuestionRecord(
        question_text=question_text,
        correct_answer=correct_answer,
        options=tuple(options),
        source_payload=item
    )


class QuestionBankClient:
    """Fetches questions from the bank under a deduplicating session token."""

    MAX_ATTEMPTS = 3
    REQUEST_TIMEOUT = 15.0
    TOKEN_TIMEOUT = 12.0
    BACKOFF_STEP = 1.2

    def __init__(
        self,
        token_store: Optional[SessionTokenStore] = None,
        api_url: str = DEFAULT_API_URL,
        token_url: str = DEFAULT_TOKEN_URL,
        session: Optional[aiohttp.ClientSession] = None,
        rng: Optional[random.Random] = None,
        request_timeout: float = REQUEST_TIMEOUT,
        token_timeout: float = TOKEN_TIMEOUT
    ):
        """
        Initialize the client.

        Args:
            token_store: Where the session token is persisted
            api_url: Question endpoint
            token_url: Token request/reset endpoint
            session: Shared aiohttp session; a short-lived one is used per call if None
            rng: Random source for option shuffling
            request_timeout: Seconds allowed for each question request
            token_timeout: Seconds allowed for each token request
        """
        self.token_store = token_store if token_store is not None else SessionTokenStore()
        self.api_url = api_url
        self.token_url = token_url
        self.request_timeout = request_timeout
        self.token_timeout = token_timeout
        self._session = session
        self._rng = rng if rng is not None else random.Random()
        self.attempts_used = 0

    async def _get_json(self, url: str, params: Dict[str, str], timeout: float) -> Any:
        """Perform one GET and decode the JSON body."""
        client_timeout = aiohttp.ClientTimeout(total=timeout)
        if self._session is not None:
            return await self._request(self._session, url, params, client_timeout)

        async with aiohttp.ClientSession() as session:
            return await self._request(session, url, params, client_timeout)

    async def _request(
        self,
        session: aiohttp.ClientSession,
        url: str,
        params: Dict[str, str],
        timeout: aiohttp.ClientTimeout
    ) -> Any:
        async with session.get(url, params=params, timeout=timeout) as response:
            response.raise_for_status()
            return await response.json(content_type=None)

    async def _token_call(self, params: Dict[str, str], operation: str) -> Dict[str, Any]:
        try:
            data = await self._get_json(self.token_url, params, self.token_timeout)
        except TRANSPORT_ERRORS as e:
            logger.error(f"Token {operation} failed: {e!r}")
            raise TokenError(f"Could not {operation} a session token: {e}") from e

        if not isinstance(data, dict):
            raise TokenError(f"Unrecognized token {operation} response")
        return data

    async def acquire_token(self) -> str:
        """
        Return the stored token, requesting and persisting a new one if absent.

        Raises:
            TokenError: If the bank cannot issue a token
        """
        cached = self.token_store.get()
        if cached:
            return cached

        data = await self._token_call({"command": "request"}, "request")
        token = data.get("token")
        if data.get("response_code") != ResponseCode.SUCCESS or not isinstance(token, str) or not token:
            logger.error(f"Token request rejected: {data!r}")
            raise TokenError("The question bank did not issue a session token")

        self.token_store.set(token)
        logger.info(
            "Acquired new session token",
            extra={'event_type': 'token_acquired', 'timestamp': time.time()}
        )
        return token

    async def reset_token(self, token: str) -> None:
        """
        Ask the bank to forget which questions this token has already served.

        Raises:
            TokenError: If the reset is not acknowledged
        """
        data = await self._token_call({"command": "reset", "token": token}, "reset")
        if data.get("response_code") != ResponseCode.SUCCESS:
            logger.error(f"Token reset rejected: {data!r}")
            raise TokenError("The question bank refused to reset the session token")

        logger.info(
            "Session token reset",
            extra={'event_type': 'token_reset', 'timestamp': time.time()}
        )

    def _build_params(self, params: QuizParameters, token: str) -> Dict[str, str]:
        query = {"amount": str(params.amount)}
        if params.category is not None:
            query["category"] = str(params.category)
        if params.difficulty is not None:
            query["difficulty"] = params.difficulty.value
        query["type"] = params.question_type
        query["token"] = token
        return query

    def _normalize_results(self, results: Any) -> List[QuestionRecord]:
        questions = []
        for item in results if isinstance(results, list) else []:
            try:
                questions.append(normalize_question(item, self._rng))
            except ValueError as e:
                logger.warning(f"Skipping unusable question: {e}")
        return questions

    async def fetch_questions(self, params: QuizParameters) -> List[QuestionRecord]:
        """
        Fetch and normalize a set of questions.

        Args:
            params: Requested amount, filters and timing

        Returns:
            List of QuestionRecord in the order the bank returned them

        Raises:
            InvalidParametersError: Parameters are invalid or rejected by the bank
            InsufficientQuestionsError: Not enough questions match the filters
            EmptyResultError: Success reported but no usable questions returned
            TokenError: Session token could not be issued or reset
            FetchExhaustedError: All attempts failed
        """
        self.attempts_used = 0

        issues = params.validate()
        if issues:
            raise InvalidParametersError("Invalid parameters: " + "; ".join(issues))

        token = await self.acquire_token()

        for attempt in range(self.MAX_ATTEMPTS):
            self.attempts_used = attempt + 1
            query = self._build_params(params, token)

            try:
                data = await self._get_json(self.api_url, query, self.request_timeout)
            except TRANSPORT_ERRORS as e:
                logger.warning(
                    f"Question request attempt {attempt + 1}/{self.MAX_ATTEMPTS} failed: {e!r}",
                    extra={'event_type': 'fetch_transport_error', 'attempt': attempt + 1}
                )
                await self._backoff(attempt)
                continue

            code = data.get("response_code") if isinstance(data, dict) else None

            if code == ResponseCode.SUCCESS:
                questions = self._normalize_results(data.get("results"))
                if not questions:
                    raise EmptyResultError("No questions returned.")
                logger.info(
                    f"Fetched {len(questions)} questions in {attempt + 1} attempt(s)",
                    extra={'event_type': 'fetch_success', 'attempt': attempt + 1, 'timestamp': time.time()}
                )
                return questions

            if code == ResponseCode.NO_RESULTS:
                raise InsufficientQuestionsError(
                    "Not enough questions for the selected filters. Try different settings."
                )

            if code == ResponseCode.INVALID_PARAMETER:
                raise InvalidParametersError("Invalid parameters. Please review your settings.")

            if code == ResponseCode.TOKEN_NOT_FOUND:
                logger.warning("Session token not recognized, requesting a new one")
                self.token_store.clear()
                token = await self.acquire_token()
                continue

            if code == ResponseCode.TOKEN_EMPTY:
                logger.info("Session token exhausted, resetting it")
                await self.reset_token(token)
                continue

            logger.warning(
                f"Unexpected response code {code!r} on attempt {attempt + 1}/{self.MAX_ATTEMPTS}",
                extra={'event_type': 'fetch_unexpected_code', 'attempt': attempt + 1, 'response_code': code}
            )
            await self._backoff(attempt)

        raise FetchExhaustedError("Failed to fetch questions. Please try again.")

    async def _backoff(self, attempt: int) -> None:
        delay = self.BACKOFF_STEP * (attempt + 1)
        logger.debug(f"Backing off {delay:.1f}s before next attempt")
        await asyncio.sleep(delay)
