"""
Configuration manager for quiz parameters, endpoints and logging.
"""
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from trivia_quiz.models import Difficulty, QuizParameters
from trivia_quiz.question_bank import DEFAULT_API_URL, DEFAULT_TOKEN_URL, QuestionBankClient
from trivia_quiz.token_store import JsonFileStateStore, MemoryStateStore, SessionTokenStore


logger = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    "quiz": {
        "amount": 10,
        "category": None,
        "difficulty": None,
        "per_question_seconds": 30
    },
    "api": {
        "api_url": DEFAULT_API_URL,
        "token_url": DEFAULT_TOKEN_URL,
        "request_timeout": QuestionBankClient.REQUEST_TIMEOUT,
        "token_timeout": QuestionBankClient.TOKEN_TIMEOUT
    },
    "storage": {
        "state_file": None
    },
    "logging": {
        "level": "INFO",
        "log_directory": None
    }
}

ENV_OVERRIDES = {
    "TRIVIA_API_URL": ("api", "api_url"),
    "TRIVIA_TOKEN_URL": ("api", "token_url"),
    "TRIVIA_STATE_FILE": ("storage", "state_file"),
    "TRIVIA_LOG_LEVEL": ("logging", "level"),
}


def load_config(config_path: Optional[str] = "config.json") -> Dict[str, Any]:
    """
    Load configuration from a JSON file merged over the defaults.

    A missing or broken file is logged and the defaults are used; pass None
    to skip the file entirely.
    Environment variables in ENV_OVERRIDES take precedence over the file.
    """
    config = {section: dict(values) for section, values in DEFAULT_CONFIG.items()}
    path = Path(config_path) if config_path else None

    if path is not None and path.is_file():
        try:
            with open(path, 'r', encoding='utf-8') as f:
                file_config = json.load(f)
            if isinstance(file_config, dict):
                for section, values in file_config.items():
                    if isinstance(values, dict):
                        config.setdefault(section, {}).update(values)
            else:
                logger.error(f"Ignoring {path}: top level must be an object")
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in {path}, using defaults: {e}")
        except OSError as e:
            logger.error(f"Error loading {path}, using defaults: {e}")
    else:
        logger.debug(f"No configuration file at {path}, using defaults")

    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            config[section][key] = value

    return config


def setup_logging_from_config(config: Dict[str, Any]) -> None:
    """Set up logging based on configuration."""
    log_config = config.get('logging', {})
    log_level = getattr(logging, str(log_config.get('level') or 'INFO').upper(), logging.INFO)

    handlers: List[logging.Handler] = [logging.StreamHandler()]
    log_directory = log_config.get('log_directory')
    if log_directory:
        log_path = Path(log_directory)
        log_path.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path / "trivia_quiz.log", encoding='utf-8'))

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


class ConfigManager:
    """Manages default quiz parameters and builds configured components."""

    # Validation limits
    MIN_AMOUNT = QuizParameters.MIN_AMOUNT
    MAX_AMOUNT = QuizParameters.MAX_AMOUNT
    MIN_TIMER_DURATION = QuizParameters.MIN_SECONDS
    MAX_TIMER_DURATION = QuizParameters.MAX_SECONDS

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Args:
            config: Loaded configuration, defaults are used if None
        """
        self.config = config if config is not None else load_config(None)
        quiz = self.config.get('quiz', {})
        self._defaults = QuizParameters()
        self._apply_quiz_section(quiz)

    def _apply_quiz_section(self, quiz: Dict[str, Any]) -> None:
        setters = (
            ('amount', self.set_amount),
            ('category', self.set_category),
            ('difficulty', self.set_difficulty),
            ('per_question_seconds', self.set_per_question_seconds),
        )
        for key, setter in setters:
            if key in quiz:
                result = setter(quiz[key])
                if not result['success']:
                    logger.warning(f"Ignoring configured {key}: {result['error']}")

    def get_quiz_parameters(self) -> QuizParameters:
        """Return a fresh copy of the default quiz parameters."""
        return QuizParameters(
            amount=self._defaults.amount,
            category=self._defaults.category,
            difficulty=self._defaults.difficulty,
            per_question_seconds=self._defaults.per_question_seconds
        )

    def set_amount(self, amount: int) -> Dict[str, Any]:
        """
        Set the number of questions per quiz.

        Args:
            amount: Number of questions to request

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if isinstance(amount, bool) or not isinstance(amount, int):
            error_msg = f"Question amount must be an integer, got {type(amount).__name__}"
            logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected a number, got {type(amount).__name__}"
            }

        if not self.MIN_AMOUNT <= amount <= self.MAX_AMOUNT:
            error_msg = f"Question amount must be between {self.MIN_AMOUNT} and {self.MAX_AMOUNT}"
            logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Choose between {self.MIN_AMOUNT} and {self.MAX_AMOUNT} questions"
            }

        self._defaults.amount = amount
        logger.info(f"Question amount set to {amount}")
        return {
            'success': True,
            'message': f"Question amount set to {amount}",
            'user_message': f"✅ Quizzes will have {amount} questions"
        }

    def set_category(self, category: Optional[int]) -> Dict[str, Any]:
        """Set the category filter, None for any category."""
        if category is None:
            self._defaults.category = None
            logger.info("Category filter cleared")
            return {
                'success': True,
                'message': "Category filter cleared",
                'user_message': "✅ Questions from any category"
            }

        if isinstance(category, bool) or not isinstance(category, int) or category < 1:
            error_msg = f"Category must be a positive integer, got {category!r}"
            logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': "❌ Invalid category"
            }

        self._defaults.category = category
        logger.info(f"Category set to {category}")
        return {
            'success': True,
            'message': f"Category set to {category}",
            'user_message': f"✅ Category set to {category}"
        }

    def set_difficulty(self, difficulty) -> Dict[str, Any]:
        """
        Set the difficulty filter.

        Args:
            difficulty: Difficulty member, its name as a string, or None for any

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if difficulty is None or difficulty == "":
            self._defaults.difficulty = None
            logger.info("Difficulty filter cleared")
            return {
                'success': True,
                'message': "Difficulty filter cleared",
                'user_message': "✅ Questions of any difficulty"
            }

        try:
            value = difficulty if isinstance(difficulty, Difficulty) else Difficulty(str(difficulty).lower())
        except ValueError:
            allowed = ", ".join(d.value for d in Difficulty)
            error_msg = f"Difficulty must be one of {allowed}, got {difficulty!r}"
            logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Unknown difficulty: choose {allowed}"
            }

        self._defaults.difficulty = value
        logger.info(f"Difficulty set to {value.value}")
        return {
            'success': True,
            'message': f"Difficulty set to {value.value}",
            'user_message': f"✅ Difficulty set to {value.value}"
        }

    def set_per_question_seconds(self, duration: int) -> Dict[str, Any]:
        """Set the time allowed for each question, in seconds."""
        if isinstance(duration, bool) or not isinstance(duration, int):
            error_msg = f"Timer duration must be an integer, got {type(duration).__name__}"
            logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected a number, got {type(duration).__name__}"
            }

        if duration < self.MIN_TIMER_DURATION:
            error_msg = f"Timer duration must be at least {self.MIN_TIMER_DURATION} seconds"
            logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Timer too short: Minimum is {self.MIN_TIMER_DURATION} seconds"
            }

        if duration > self.MAX_TIMER_DURATION:
            error_msg = f"Timer duration cannot exceed {self.MAX_TIMER_DURATION} seconds"
            logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Timer too long: Maximum is {self.MAX_TIMER_DURATION} seconds"
            }

        self._defaults.per_question_seconds = duration
        logger.info(f"Timer duration set to {duration} seconds")
        return {
            'success': True,
            'message': f"Timer duration set to {duration} seconds",
            'user_message': f"✅ Timer set to {duration} seconds"
        }

    def reset_to_defaults(self) -> None:
        """Reset quiz parameters to their default values."""
        self._defaults = QuizParameters()
        logger.info("Quiz parameters reset to default values")

    def validate_settings(self) -> Dict[str, Any]:
        """
        Validate current settings and return validation results.

        Returns:
            Dictionary with validation results and any issues found
        """
        issues = self._defaults.validate()

        api = self.config.get('api', {})
        for key in ('api_url', 'token_url'):
            if not isinstance(api.get(key), str) or not api.get(key).startswith(('http://', 'https://')):
                issues.append(f"Invalid {key}: {api.get(key)!r}")

        return {
            "valid": not issues,
            "issues": issues
        }

    def get_settings_summary(self) -> str:
        """Human-readable description of the current defaults."""
        params = self._defaults
        category_str = str(params.category) if params.category is not None else "any"
        difficulty_str = params.difficulty.value if params.difficulty is not None else "any"
        return (
            f"Quiz Settings:\n"
            f"• Questions: {params.amount}\n"
            f"• Category: {category_str}\n"
            f"• Difficulty: {difficulty_str}\n"
            f"• Timer: {params.per_question_seconds} seconds"
        )

    def create_token_store(self) -> SessionTokenStore:
        """Token store backed by the configured state file, or memory if none."""
        state_file = self.config.get('storage', {}).get('state_file')
        if state_file:
            return SessionTokenStore(JsonFileStateStore(state_file))
        return SessionTokenStore(MemoryStateStore())

    def create_client(self, token_store: Optional[SessionTokenStore] = None, **kwargs) -> QuestionBankClient:
        """Question bank client using the configured endpoints and timeouts."""
        api = self.config.get('api', {})
        return QuestionBankClient(
            token_store=token_store if token_store is not None else self.create_token_store(),
            api_url=api.get('api_url', DEFAULT_API_URL),
            token_url=api.get('token_url', DEFAULT_TOKEN_URL),
            request_timeout=float(api.get('request_timeout', QuestionBankClient.REQUEST_TIMEOUT)),
            token_timeout=float(api.get('token_timeout', QuestionBankClient.TOKEN_TIMEOUT)),
            **kwargs
        )
