"""
Configuration management for shelfbridge
"""

import logging
import os
from typing import Any, Callable, Dict, List, Optional

import yaml
from dotenv import load_dotenv

GLOBAL_DEFAULTS: Dict[str, Any] = {
    "workers": 3,
    "parallel": True,
    "dry_run": False,
    "cache_file": "data/.book_cache.db",
    "max_retries": 3,
    "retry_delay": 5,
    "log_file": "shelfbridge.log",
}

TITLE_AUTHOR_DEFAULTS: Dict[str, Any] = {
    "enabled": True,
    "confidence_threshold": 0.7,
    "max_search_results": 5,
}

SCORING_KEYS = (
    "perfect_match_bonus_rate",
    "high_confidence_bonus_rate",
    "short_title_length",
    "short_title_penalty_per_char",
    "author_mismatch_penalty_rate",
    "cross_format_score",
    "physical_format_score",
    "other_format_score",
    "missing_format_score",
    "perfect_format_bonus",
    "max_popularity_bonus",
)

USER_KEYS = ("id", "abs_url", "abs_token", "hardcover_token")

TRUE_VALUES = ("true", "1", "yes", "on")


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in TRUE_VALUES


# env var -> (section, key, parser)
ENV_OVERRIDES: Dict[str, tuple] = {
    "SHELFBRIDGE_WORKERS": ("global", "workers", int),
    "SHELFBRIDGE_DRY_RUN": ("global", "dry_run", _parse_bool),
    "SHELFBRIDGE_CACHE_FILE": ("global", "cache_file", str),
    "SHELFBRIDGE_CONFIDENCE_THRESHOLD": ("title_author_matching", "confidence_threshold", float),
    "SHELFBRIDGE_MAX_SEARCH_RESULTS": ("title_author_matching", "max_search_results", int),
    "SHELFBRIDGE_TITLE_AUTHOR_ENABLED": ("title_author_matching", "enabled", _parse_bool),
}


class Config:
    """Configuration loaded from config/config.yaml with environment overrides"""

    def __init__(self, config_path: str = "config/config.yaml") -> None:
        self.logger = logging.getLogger(__name__)
        self.config_path = config_path
        self._load_config()
        self._validate_config()

    def _load_config(self) -> None:
        # Load secrets and local overrides into the environment
        for env_file in ("secrets.env", ".env"):
            if os.path.exists(env_file):
                load_dotenv(env_file)
                self.logger.debug(f"Loaded environment from {env_file}")

        if not os.path.exists(self.config_path):
            raise FileNotFoundError(f"Config file not found: {self.config_path}")
        with open(self.config_path, "r") as f:
            config = yaml.safe_load(f) or {}
        if not isinstance(config, dict):
            raise ValueError(f"Config file must contain a mapping: {self.config_path}")

        self.global_config = {**GLOBAL_DEFAULTS, **(config.get("global") or {})}
        self.title_author_config = {**TITLE_AUTHOR_DEFAULTS, **(config.get("title_author_matching") or {})}
        self.scoring_config = dict(config.get("scoring") or {})
        self.users: List[Dict[str, Any]] = [dict(user) for user in (config.get("users") or []) if user]

        self._env_errors: List[str] = []
        self._apply_env_overrides()
        self.logger.info(f"Loaded configuration from {self.config_path}")

    def _apply_env_overrides(self) -> None:
        sections = {"global": self.global_config, "title_author_matching": self.title_author_config}
        for env_name, (section, key, parser) in ENV_OVERRIDES.items():
            raw_value = os.getenv(env_name)
            if raw_value is None or raw_value == "":
                continue
            try:
                sections[section][key] = parser(raw_value)
            except ValueError:
                self._env_errors.append(f"Invalid value for {env_name}: {raw_value!r}")
                continue
            self.logger.debug(f"{section}.{key} overridden by {env_name}")

        for user in self.users:
            prefix = str(user.get("id", "")).upper()
            if not prefix:
                continue
            for env_suffix, key in (("ABS_TOKEN", "abs_token"), ("HARDCOVER_TOKEN", "hardcover_token")):
                token = os.getenv(f"{prefix}_{env_suffix}")
                if token:
                    user[key] = token

    def _validate_config(self) -> None:
        errors = list(self._env_errors)

        errors.extend(self._check(self.global_config, "global.workers", "workers",
                                  lambda v: isinstance(v, int) and not isinstance(v, bool) and v >= 1,
                                  "must be an integer >= 1"))
        errors.extend(self._check(self.global_config, "global.max_retries", "max_retries",
                                  lambda v: isinstance(v, int) and not isinstance(v, bool) and v >= 1,
                                  "must be an integer >= 1"))
        errors.extend(self._check(self.global_config, "global.retry_delay", "retry_delay",
                                  lambda v: isinstance(v, (int, float)) and not isinstance(v, bool) and v >= 0,
                                  "must be a number >= 0"))
        for key in ("parallel", "dry_run"):
            errors.extend(self._check(self.global_config, f"global.{key}", key,
                                      lambda v: isinstance(v, bool), "must be true or false"))

        errors.extend(self._check(self.title_author_config, "title_author_matching.enabled", "enabled",
                                  lambda v: isinstance(v, bool), "must be true or false"))
        errors.extend(self._check(self.title_author_config, "title_author_matching.confidence_threshold",
                                  "confidence_threshold",
                                  lambda v: isinstance(v, (int, float)) and not isinstance(v, bool) and 0 <= v <= 1,
                                  "must be a number between 0 and 1"))
        errors.extend(self._check(self.title_author_config, "title_author_matching.max_search_results",
                                  "max_search_results",
                                  lambda v: isinstance(v, int) and not isinstance(v, bool) and 1 <= v <= 20,
                                  "must be an integer between 1 and 20"))

        for key, value in self.scoring_config.items():
            if key not in SCORING_KEYS:
                errors.append(f"Unknown scoring setting: {key}")
            elif not isinstance(value, (int, float)) or isinstance(value, bool):
                errors.append(f"scoring.{key} must be a number")

        if not self.users:
            errors.append("No users defined in config")
        seen_ids = set()
        for user in self.users:
            user_id = user.get("id", "[unknown]")
            for key in USER_KEYS:
                if not user.get(key):
                    errors.append(f"Missing user config: {key} for user {user_id}")
            if user_id in seen_ids:
                errors.append(f"Duplicate user id: {user_id}")
            seen_ids.add(user_id)

        if errors:
            error_msg = "Configuration validation failed:\n" + "\n".join(f"- {error}" for error in errors)
            self.logger.error(error_msg)
            raise ValueError(error_msg)
        self.logger.debug("Configuration validation passed")

    @staticmethod
    def _check(section: Dict[str, Any], label: str, key: str, valid: Callable[[Any], bool],
               message: str) -> List[str]:
        return [] if valid(section.get(key)) else [f"{label} {message} (got {section.get(key)!r})"]

    def get_global(self) -> dict:
        return self.global_config

    def get_users(self) -> list:
        return self.users

    def get_user(self, user_id: str) -> dict:
        for user in self.users:
            if user["id"] == user_id:
                return user
        raise KeyError(f"User not found: {user_id}")

    def get_title_author_config(self) -> dict:
        return self.title_author_config

    def get_scoring_overrides(self) -> dict:
        return self.scoring_config

    def __str__(self) -> str:
        """String representation of config (without sensitive data)"""
        lines = [f"Configuration ({self.config_path}):", "  Global:"]
        lines.extend(f"    {key}: {value}" for key, value in self.global_config.items())
        lines.append("  Title/author matching:")
        lines.extend(f"    {key}: {value}" for key, value in self.title_author_config.items())
        if self.scoring_config:
            lines.append("  Scoring overrides:")
            lines.extend(f"    {key}: {value}" for key, value in self.scoring_config.items())
        lines.append("  Users:")
        for user in self.users:
            lines.append(
                f"    {user.get('id')}: {user.get('abs_url')} "
                f"(ABS token: {_mask(user.get('abs_token'))}, Hardcover token: {_mask(user.get('hardcover_token'))})"
            )
        return "\n".join(lines)


def _mask(token: Optional[str]) -> str:
    return "[SET]" if token else "[NOT SET]"
