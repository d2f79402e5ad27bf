"""
Unit tests for the question bank client: tokens, retries and response codes.
"""
import asyncio
import random
import unittest
from unittest.mock import AsyncMock, MagicMock, call, patch

import aiohttp

from trivia_quiz.models import Difficulty, QuizParameters
from trivia_quiz.question_bank import (
    EmptyResultError,
    FetchExhaustedError,
    InsufficientQuestionsError,
    InvalidParametersError,
    QuestionBankClient,
    TokenError,
    decode_text,
    normalize_question,
)
from trivia_quiz.token_store import MemoryStateStore, SessionTokenStore
from tests.test_fixtures import TestFixtures


API_URL = "https://bank.test/api.php"
TOKEN_URL = "https://bank.test/api_token.php"


class QuestionBankTestCase(unittest.IsolatedAsyncioTestCase):
    """Shared setup: a client with a stored token and a patched transport."""

    def setUp(self):
        self.token_store = SessionTokenStore(MemoryStateStore())
        self.token_store.set("token-abc")
        self.client = QuestionBankClient(
            token_store=self.token_store,
            api_url=API_URL,
            token_url=TOKEN_URL,
            rng=random.Random(7)
        )
        self.params = TestFixtures.create_sample_parameters(amount=2)

    def mock_transport(self, *responses):
        self.client._get_json = AsyncMock(side_effect=list(responses))
        return self.client._get_json

    def question_calls(self, transport):
        return [c for c in transport.call_args_list if c.args[0] == API_URL]


class TestFetchSuccess(QuestionBankTestCase):

    async def test_success_returns_normalized_questions(self):
        transport = self.mock_transport(TestFixtures.success_response())

        questions = await self.client.fetch_questions(self.params)

        self.assertEqual(len(questions), 2)
        self.assertEqual(self.client.attempts_used, 1)
        for question in questions:
            self.assertEqual(len(question.options), 4)
            self.assertEqual(question.options.count(question.correct_answer), 1)
        self.assertEqual(questions[0].question_text, 'What does "CPU" stand for?')
        transport.assert_awaited_once()

    async def test_request_carries_filters_type_and_token(self):
        transport = self.mock_transport(TestFixtures.success_response())
        params = QuizParameters(amount=2, category=18, difficulty=Difficulty.HARD, per_question_seconds=20)

        await self.client.fetch_questions(params)

        url, query, timeout = transport.call_args.args
        self.assertEqual(url, API_URL)
        self.assertEqual(query, {
            "amount": "2",
            "category": "18",
            "difficulty": "hard",
            "type": "multiple",
            "token": "token-abc"
        })
        self.assertEqual(timeout, QuestionBankClient.REQUEST_TIMEOUT)

    async def test_optional_filters_omitted(self):
        transport = self.mock_transport(TestFixtures.success_response())

        await self.client.fetch_questions(self.params)

        query = transport.call_args.args[1]
        self.assertNotIn("category", query)
        self.assertNotIn("difficulty", query)

    async def test_success_without_items_raises_empty_result(self):
        self.mock_transport(TestFixtures.success_response(items=[]))

        with self.assertRaises(EmptyResultError):
            await self.client.fetch_questions(self.params)

    async def test_malformed_items_are_skipped(self):
        items = TestFixtures.create_raw_items() + [{"question": "No answers here"}]
        self.mock_transport(TestFixtures.success_response(items=items))

        questions = await self.client.fetch_questions(self.params)

        self.assertEqual(len(questions), 2)

    async def test_only_malformed_items_raises_empty_result(self):
        self.mock_transport(TestFixtures.success_response(items=[{"question": "?"}]))

        with self.assertRaises(EmptyResultError):
            await self.client.fetch_questions(self.params)


class TestResponseCodeRouting(QuestionBankTestCase):

    async def test_code_1_fails_without_retry(self):
        transport = self.mock_transport(TestFixtures.code_response(1))

        with self.assertRaises(InsufficientQuestionsError):
            await self.client.fetch_questions(self.params)

        self.assertEqual(self.client.attempts_used, 1)
        transport.assert_awaited_once()

    async def test_code_2_fails_without_retry(self):
        transport = self.mock_transport(TestFixtures.code_response(2))

        with self.assertRaises(InvalidParametersError):
            await self.client.fetch_questions(self.params)

        self.assertEqual(self.client.attempts_used, 1)
        transport.assert_awaited_once()

    async def test_code_4_resets_token_once_then_succeeds(self):
        transport = self.mock_transport(
            TestFixtures.code_response(4),
            {"response_code": 0, "token": "token-abc"},
            TestFixtures.success_response()
        )

        with patch('trivia_quiz.question_bank.asyncio.sleep', new_callable=AsyncMock) as mock_sleep:
            questions = await self.client.fetch_questions(self.params)

        self.assertEqual(len(questions), 2)
        self.assertEqual(self.client.attempts_used, 2)
        reset_calls = [c for c in transport.call_args_list if c.args[0] == TOKEN_URL]
        self.assertEqual(len(reset_calls), 1)
        self.assertEqual(reset_calls[0].args[1], {"command": "reset", "token": "token-abc"})
        mock_sleep.assert_not_awaited()
        self.assertEqual(self.token_store.get(), "token-abc")

    async def test_code_4_reset_rejected_raises_token_error(self):
        self.mock_transport(TestFixtures.code_response(4), {"response_code": 2})

        with self.assertRaises(TokenError):
            await self.client.fetch_questions(self.params)

    async def test_code_3_replaces_token_before_next_call(self):
        transport = self.mock_transport(
            TestFixtures.code_response(3),
            TestFixtures.token_response("token-new"),
            TestFixtures.success_response()
        )

        with patch('trivia_quiz.question_bank.asyncio.sleep', new_callable=AsyncMock) as mock_sleep:
            questions = await self.client.fetch_questions(self.params)

        self.assertEqual(len(questions), 2)
        self.assertEqual(self.client.attempts_used, 2)
        self.assertEqual(transport.call_args_list[1], call(TOKEN_URL, {"command": "request"}, QuestionBankClient.TOKEN_TIMEOUT))
        second_query = self.question_calls(transport)[1].args[1]
        self.assertEqual(second_query["token"], "token-new")
        self.assertEqual(self.token_store.get(), "token-new")
        mock_sleep.assert_not_awaited()

    async def test_unexpected_codes_back_off_linearly_then_exhaust(self):
        transport = self.mock_transport(*(TestFixtures.code_response(9) for _ in range(3)))

        with patch('trivia_quiz.question_bank.asyncio.sleep', new_callable=AsyncMock) as mock_sleep:
            with self.assertRaises(FetchExhaustedError):
                await self.client.fetch_questions(self.params)

        self.assertEqual(transport.await_count, 3)
        self.assertEqual(self.client.attempts_used, 3)
        delays = [c.args[0] for c in mock_sleep.await_args_list]
        self.assertEqual(len(delays), 3)
        for actual, expected in zip(delays, [1.2, 2.4, 3.6]):
            self.assertAlmostEqual(actual, expected)

    async def test_transport_error_is_retried_with_backoff(self):
        self.mock_transport(aiohttp.ClientConnectionError("boom"), TestFixtures.success_response())

        with patch('trivia_quiz.question_bank.asyncio.sleep', new_callable=AsyncMock) as mock_sleep:
            questions = await self.client.fetch_questions(self.params)

        self.assertEqual(len(questions), 2)
        self.assertEqual(self.client.attempts_used, 2)
        mock_sleep.assert_awaited_once()
        self.assertAlmostEqual(mock_sleep.await_args.args[0], 1.2)

    async def test_timeout_is_retried(self):
        self.mock_transport(asyncio.TimeoutError(), asyncio.TimeoutError(), TestFixtures.success_response())

        with patch('trivia_quiz.question_bank.asyncio.sleep', new_callable=AsyncMock):
            questions = await self.client.fetch_questions(self.params)

        self.assertEqual(len(questions), 2)
        self.assertEqual(self.client.attempts_used, 3)

    async def test_token_recovery_shares_attempt_budget(self):
        self.mock_transport(
            TestFixtures.code_response(4),
            {"response_code": 0},
            TestFixtures.code_response(4),
            {"response_code": 0},
            TestFixtures.code_response(4),
            {"response_code": 0}
        )

        with self.assertRaises(FetchExhaustedError):
            await self.client.fetch_questions(self.params)

        self.assertEqual(self.client.attempts_used, 3)


class TestTokenHandling(QuestionBankTestCase):

    async def test_missing_token_is_requested_and_persisted(self):
        self.token_store.clear()
        transport = self.mock_transport(TestFixtures.token_response("token-xyz"), TestFixtures.success_response())

        await self.client.fetch_questions(self.params)

        self.assertEqual(transport.call_args_list[0].args[:2], (TOKEN_URL, {"command": "request"}))
        self.assertEqual(self.token_store.get(), "token-xyz")
        self.assertEqual(transport.call_args_list[1].args[1]["token"], "token-xyz")

    async def test_stored_token_skips_token_request(self):
        transport = self.mock_transport(TestFixtures.success_response())

        await self.client.fetch_questions(self.params)

        self.assertEqual(len(self.question_calls(transport)), transport.await_count)

    async def test_token_request_rejected(self):
        self.token_store.clear()
        self.mock_transport({"response_code": 3})

        with self.assertRaises(TokenError):
            await self.client.fetch_questions(self.params)
        self.assertIsNone(self.token_store.get())

    async def test_token_request_transport_error(self):
        self.token_store.clear()
        self.mock_transport(aiohttp.ClientConnectionError("offline"))

        with self.assertRaises(TokenError):
            await self.client.fetch_questions(self.params)

    async def test_token_request_unrecognized_body(self):
        self.token_store.clear()
        self.mock_transport(["not", "an", "object"])

        with self.assertRaises(TokenError):
            await self.client.fetch_questions(self.params)


class TestParameterValidation(QuestionBankTestCase):

    async def test_invalid_parameters_never_reach_network(self):
        transport = self.mock_transport()

        for params in (
            QuizParameters(amount=0),
            QuizParameters(amount=51),
            QuizParameters(amount=5, category=-1),
            QuizParameters(amount=5, difficulty="impossible"),
            QuizParameters(amount=5, per_question_seconds=0),
        ):
            with self.subTest(params=params):
                with self.assertRaises(InvalidParametersError):
                    await self.client.fetch_questions(params)

        transport.assert_not_awaited()


class TestTransport(unittest.IsolatedAsyncioTestCase):

    async def test_get_json_uses_shared_session(self):
        response = MagicMock()
        response.raise_for_status = MagicMock()
        response.json = AsyncMock(return_value={"response_code": 0})
        session = MagicMock()
        session.get.return_value.__aenter__.return_value = response

        client = QuestionBankClient(session=session, api_url=API_URL, token_url=TOKEN_URL)
        data = await client._get_json(API_URL, {"amount": "1"}, 15.0)

        self.assertEqual(data, {"response_code": 0})
        args, kwargs = session.get.call_args
        self.assertEqual(args, (API_URL,))
        self.assertEqual(kwargs["params"], {"amount": "1"})
        self.assertEqual(kwargs["timeout"].total, 15.0)
        response.raise_for_status.assert_called_once()


class TestNormalization(unittest.TestCase):

    def test_decode_text(self):
        self.assertEqual(decode_text("Tom &amp; Jerry&#039;s &quot;show&quot;"), 'Tom & Jerry\'s "show"')

    def test_options_contain_correct_answer_once(self):
        for item in TestFixtures.create_raw_items():
            question = normalize_question(item, random.Random(1))
            self.assertIn(len(question.options), range(2, 5))
            self.assertEqual(question.options.count(question.correct_answer), 1)
            self.assertIs(question.source_payload, item)

    def test_shuffle_uses_injected_random_source(self):
        item = TestFixtures.create_raw_items()[1]
        first = normalize_question(item, random.Random(42))
        second = normalize_question(item, random.Random(42))
        self.assertEqual(first.options, second.options)

    def test_true_false_item_has_two_options(self):
        item = {"question": "Is water wet?", "correct_answer": "True", "incorrect_answers": ["False"]}
        question = normalize_question(item, random.Random(0))
        self.assertEqual(sorted(question.options), ["False", "True"])

    def test_rejects_duplicate_correct_answer(self):
        item = {"question": "Q", "correct_answer": "A", "incorrect_answers": ["A", "B"]}
        with self.assertRaises(ValueError):
            normalize_question(item, random.Random(0))

    def test_rejects_too_many_options(self):
        item = {"question": "Q", "correct_answer": "A", "incorrect_answers": ["B", "C", "D", "E"]}
        with self.assertRaises(ValueError):
            normalize_question(item, random.Random(0))

    def test_rejects_missing_fields(self):
        with self.assertRaises(ValueError):
            normalize_question({"question": "Q"}, random.Random(0))


if __name__ == '__main__':
    unittest.main()
