"""Configuration for the release summarizer.

Settings are plain pydantic models so they validate on load and can be
built directly in tests. They are passed explicitly into the watcher, the
GitHub client and the LLM client; nothing reads a module-level global.

Sources, lowest to highest precedence:
1. Defaults declared on the models
2. A YAML file (path from RELEASE_SUMMARIZER_CONFIG, default config.yaml)
3. A few environment variables for values commonly set per deployment

Example config.yaml:

    check_interval_seconds: 1800
    max_session_rounds: 6
    data_dir: /var/lib/release-summarizer
    llm:
      model: gpt-4o-mini
"""

from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path

import yaml
from pydantic import BaseModel, Field


class LLMConfig(BaseModel):
    """Configuration for the LLM client.

    Attributes:
        model: OpenAI model identifier (e.g., "gpt-4o", "gpt-4o-mini")
        temperature: Sampling temperature
        max_tokens: Maximum tokens in each response
        api_key: OpenAI API key (loaded from env if not provided)
        timeout_seconds: Timeout for a single round-trip
        max_attempts: Attempts per round before giving up
    """

    model: str = "gpt-4o"
    temperature: float = 0.2
    max_tokens: int = 1024
    api_key: str | None = None
    timeout_seconds: float = Field(60.0, gt=0)
    max_attempts: int = Field(3, ge=1)


class AppConfig(BaseModel):
    """Top-level service configuration.

    Attributes:
        check_interval_seconds: Delay between two release checks of a repository
        max_session_rounds: Upper bound on LLM rounds per summarization
        github_api_token: Default GitHub token for repositories tracked
            without their own
        github_timeout_seconds: Timeout for each GitHub API call
        data_dir: Directory holding the event logs and the timer file
        llm: LLM client settings
    """

    check_interval_seconds: float = Field(3600.0, gt=0)
    max_session_rounds: int = Field(8, ge=1)
    github_api_token: str | None = None
    github_timeout_seconds: float = Field(30.0, gt=0)
    data_dir: Path = Path("data")
    llm: LLMConfig = Field(default_factory=LLMConfig)

    @property
    def check_interval(self) -> timedelta:
        return timedelta(seconds=self.check_interval_seconds)


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load and validate the service configuration.

    Args:
        path: Path to a YAML file. Falls back to RELEASE_SUMMARIZER_CONFIG,
              then to "config.yaml".

    Returns:
        A validated AppConfig. Uses defaults if the file doesn't exist.

    Raises:
        ValueError: If the YAML content is invalid or fails validation.
    """
    config_path = Path(path or os.environ.get("RELEASE_SUMMARIZER_CONFIG", "config.yaml"))

    raw: dict = {}
    if config_path.exists():
        try:
            raw = yaml.safe_load(config_path.read_text()) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ValueError(f"Invalid config in {config_path}: expected a mapping")

    if "CHECK_INTERVAL_SECONDS" in os.environ:
        raw["check_interval_seconds"] = os.environ["CHECK_INTERVAL_SECONDS"]
    if "DATA_DIR" in os.environ:
        raw["data_dir"] = os.environ["DATA_DIR"]
    if not raw.get("github_api_token") and os.environ.get("GITHUB_TOKEN"):
        raw["github_api_token"] = os.environ["GITHUB_TOKEN"]

    try:
        return AppConfig.model_validate(raw)
    except Exception as exc:
        raise ValueError(f"Invalid config in {config_path}: {exc}") from exc
