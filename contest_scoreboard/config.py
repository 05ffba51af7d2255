"""
Configuration management for the contest scoreboard.
Supports both JSON file configuration and environment variable overrides.
"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Dict, Any, List

from .models import ContestStatus

logger = logging.getLogger(__name__)


class ContestConfig:
    """Configuration management for the contest scoreboard."""

    DEFAULT_CONFIG = {
        "contest_name": "Contest Scoreboard",
        "contest": {
            "initial_status": "Live",  # Not Started, Live or Finished
            "admin_token": "",  # empty disables admin endpoints
        },
        "scoring": {
            "key_min_columns": 3,  # 3: category_id,content,label  2: id,prediction
            "header_tokens": ["id", "category_id", "taskid"],
            "max_conflict_retries": 3,
        },
        "features": {
            "live_updates": True,
            "public_key_download": True,
        },
        "submission": {
            "max_submission_bytes": 5 * 1024 * 1024,
        },
        "ui": {
            "max_leaderboard_entries": 100,
        },
    }

    def __init__(
        self,
        config_path: str = "contest_config.json",
    ) -> None:
        """Initialize configuration from file, environment variables, or defaults."""
        self.config_path = Path(config_path)
        self.config = self._load_config()
        self._apply_env_overrides()
        self._validate_config()

    def _load_config(self) -> Dict[str, Any]:
        """
        Load configuration from JSON file or create default.

        @return: Dictionary containing the loaded configuration
        """
        if self.config_path.exists():
            try:
                with open(self.config_path, "r", encoding="utf-8") as f:
                    loaded_config = json.load(f)

                config = copy.deepcopy(self.DEFAULT_CONFIG)
                self._deep_merge(config, loaded_config)
                return config

            except (json.JSONDecodeError, IOError) as e:
                logger.warning(
                    "Error loading config from %s: %s. Using default configuration",
                    self.config_path,
                    e,
                )
                return copy.deepcopy(self.DEFAULT_CONFIG)
        else:
            self._create_default_config()
            return copy.deepcopy(self.DEFAULT_CONFIG)

    def _deep_merge(
        self,
        base_dict: Dict[str, Any],
        update_dict: Dict[str, Any],
    ) -> None:
        """
        Recursively merge dictionaries.

        @param base_dict: Base dictionary to merge into
        @param update_dict: Dictionary with updates to merge
        """
        for key, value in update_dict.items():
            if (
                key in base_dict
                and isinstance(base_dict[key], dict)
                and isinstance(value, dict)
            ):
                self._deep_merge(base_dict[key], value)
            else:
                base_dict[key] = value

    def _apply_env_overrides(self) -> None:
        """
        Apply environment variable overrides to configuration.

        Environment variables follow the pattern: SECTION_KEY (e.g., CONTEST_NAME, KEY_MIN_COLUMNS)
        """
        env_mappings = {
            "CONTEST_NAME": ("contest_name",),

            "CONTEST_STATUS": ("contest", "initial_status"),
            "ADMIN_TOKEN": ("contest", "admin_token"),

            "KEY_MIN_COLUMNS": ("scoring", "key_min_columns"),
            "MAX_CONFLICT_RETRIES": ("scoring", "max_conflict_retries"),

            "LIVE_UPDATES": ("features", "live_updates"),
            "PUBLIC_KEY_DOWNLOAD": ("features", "public_key_download"),

            "MAX_SUBMISSION_BYTES": ("submission", "max_submission_bytes"),

            "MAX_LEADERBOARD_ENTRIES": ("ui", "max_leaderboard_entries"),
        }

        # Names and tokens stay strings even when they look like numbers
        raw_string_vars = {"CONTEST_NAME", "ADMIN_TOKEN"}

        for env_var, config_path in env_mappings.items():
            env_value = os.getenv(env_var)
            if env_value is not None:
                if env_var in raw_string_vars:
                    converted_value = env_value
                else:
                    converted_value = self._convert_env_value(env_value)
                self._set_nested_config(config_path, converted_value)

        header_tokens = os.getenv("HEADER_TOKENS")
        if header_tokens is not None:
            self._set_nested_config(
                ("scoring", "header_tokens"),
                [token.strip() for token in header_tokens.split(",") if token.strip()],
            )

    def _convert_env_value(self, value: str) -> Any:
        """
        Convert environment variable string to appropriate type.

        @param value: String value from environment variable
        @return: Converted value (bool, int, or string)
        """
        if value.lower() in ("true", "yes", "on"):
            return True
        elif value.lower() in ("false", "no", "off"):
            return False

        try:
            return int(value)
        except ValueError:
            pass

        return value

    def _set_nested_config(self, path: tuple, value: Any) -> None:
        """
        Set a nested configuration value using a path tuple.

        @param path: Tuple representing the nested path (e.g., ("scoring", "key_min_columns"))
        @param value: Value to set
        """
        current = self.config
        for key in path[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]
        current[path[-1]] = value

    def _create_default_config(self) -> None:
        """
        Create a default configuration file.

        Writes the default configuration to the configured file path.
        """
        try:
            with open(self.config_path, "w", encoding="utf-8") as f:
                json.dump(self.DEFAULT_CONFIG, f, indent=2)
            logger.info("Created default configuration file: %s", self.config_path)
        except IOError as e:
            logger.warning("Could not create config file %s: %s", self.config_path, e)

    def _validate_config(self) -> None:
        """
        Validate configuration values.

        Checks configuration values for validity and sets defaults for invalid values.
        """
        try:
            ContestStatus.parse(str(self.config["contest"]["initial_status"]))
        except ValueError:
            logger.warning("Invalid initial_status, using 'Live'")
            self.config["contest"]["initial_status"] = "Live"

        if not isinstance(self.config["contest"]["admin_token"], str):
            logger.warning("Invalid admin_token, admin endpoints disabled")
            self.config["contest"]["admin_token"] = ""

        if self.config["scoring"]["key_min_columns"] not in (2, 3):
            logger.warning("Invalid key_min_columns, using 3")
            self.config["scoring"]["key_min_columns"] = 3

        tokens = self.config["scoring"]["header_tokens"]
        if not isinstance(tokens, list) or not all(isinstance(t, str) for t in tokens):
            logger.warning("Invalid header_tokens, using defaults")
            self.config["scoring"]["header_tokens"] = list(
                self.DEFAULT_CONFIG["scoring"]["header_tokens"]
            )

        retries = self.config["scoring"]["max_conflict_retries"]
        if not isinstance(retries, int) or retries < 1:
            logger.warning("Invalid max_conflict_retries, using 3")
            self.config["scoring"]["max_conflict_retries"] = 3

        max_bytes = self.config["submission"]["max_submission_bytes"]
        if not isinstance(max_bytes, int) or max_bytes <= 0:
            logger.warning("Invalid max_submission_bytes, using 5 MiB")
            self.config["submission"]["max_submission_bytes"] = 5 * 1024 * 1024

        max_entries = self.config["ui"]["max_leaderboard_entries"]
        if not isinstance(max_entries, int) or max_entries <= 0:
            logger.warning("Invalid max_leaderboard_entries, using 100")
            self.config["ui"]["max_leaderboard_entries"] = 100

    def get(
        self,
        *keys: str,
    ) -> Any:
        """
        Get nested configuration value using dot notation.

        @param keys: Variable arguments representing nested keys to traverse
        @return: Configuration value at the specified path, None if not found
        """
        value = self.config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return None
        return value

    def is_feature_enabled(
        self,
        feature_name: str,
    ) -> bool:
        """
        Check if a feature is enabled.

        @param feature_name: Name of the feature to check
        @return: True if feature is enabled, False otherwise
        """
        return self.get("features", feature_name) is True

    @property
    def initial_status(self) -> ContestStatus:
        return ContestStatus.parse(str(self.get("contest", "initial_status")))

    @property
    def header_tokens(self) -> List[str]:
        return list(self.get("scoring", "header_tokens"))

    def save_config(self) -> bool:
        """
        Save current configuration to file.

        @return: True if saved successfully, False on error
        """
        try:
            with open(self.config_path, "w", encoding="utf-8") as f:
                json.dump(self.config, f, indent=2)
            return True
        except IOError as e:
            logger.warning("Could not save config file %s: %s", self.config_path, e)
            return False
