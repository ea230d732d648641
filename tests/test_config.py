"""Tests for environment configuration and logging setup."""

import json
import logging

import pytest

from gl_token_scope.config import load_config
from gl_token_scope.errors import ConfigError, GitLabApiError
from gl_token_scope.logging_utils import StructuredFormatter, format_error, set_debug_errors


class TestLoadConfig:
    def test_defaults(self):
        config = load_config({"GITLAB_TOKEN": "secret"})

        assert config.url == "https://gitlab.com"
        assert config.token == "secret"
        assert config.timeout_ms == 10000
        assert config.max_retries == 2
        assert config.retry_delay_ms == 500

    def test_missing_token(self):
        with pytest.raises(ConfigError, match="GITLAB_TOKEN is not defined"):
            load_config({"GITLAB_URL": "https://gitlab.example.com"})

    def test_url_from_env_and_override(self):
        env = {"GITLAB_TOKEN": "t", "GITLAB_URL": "https://gitlab.example.com/"}

        assert load_config(env).url == "https://gitlab.example.com"
        assert load_config(env, gitlab_url="https://other.example.com").url == "https://other.example.com"

    def test_http_settings(self):
        env = {
            "GITLAB_TOKEN": "t",
            "GITLAB_HTTP_TIMEOUT_MS": "2500",
            "GITLAB_HTTP_MAX_RETRIES": "0",
            "GITLAB_HTTP_RETRY_DELAY_MS": "0",
        }
        config = load_config(env)

        assert (config.timeout_ms, config.max_retries, config.retry_delay_ms) == (2500, 0, 0)

    def test_empty_values_use_defaults(self):
        assert load_config({"GITLAB_TOKEN": "t", "GITLAB_HTTP_MAX_RETRIES": ""}).max_retries == 2

    @pytest.mark.parametrize(
        "name, value, message",
        [
            ("GITLAB_HTTP_TIMEOUT_MS", "abc", 'GITLAB_HTTP_TIMEOUT_MS must be a valid integer, but received "abc"'),
            ("GITLAB_HTTP_TIMEOUT_MS", "0", "GITLAB_HTTP_TIMEOUT_MS must be greater than or equal to 1, but received 0"),
            ("GITLAB_HTTP_MAX_RETRIES", "-1", "GITLAB_HTTP_MAX_RETRIES must be greater than or equal to 0"),
            ("GITLAB_HTTP_RETRY_DELAY_MS", "1.5", "GITLAB_HTTP_RETRY_DELAY_MS must be a valid integer"),
        ],
    )
    def test_invalid_values(self, name, value, message):
        with pytest.raises(ConfigError) as exc_info:
            load_config({"GITLAB_TOKEN": "t", name: value})
        assert message in str(exc_info.value)


class TestLogging:
    def make_record(self, message, **extra):
        record = logging.LogRecord("gl-token-scope", logging.WARNING, __file__, 1, message, None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_text_format_with_project(self):
        formatter = StructuredFormatter()
        assert formatter.format(self.make_record("hello", project_id=7)) == "[WARNING] [project 7] hello"
        assert formatter.format(self.make_record("plain")) == "[WARNING] plain"

    def test_json_format(self):
        line = StructuredFormatter(json_mode=True).format(self.make_record("hello", project_id=7))
        assert json.loads(line) == {"level": "WARNING", "message": "hello", "project_id": 7}

    def test_format_error(self):
        error = GitLabApiError("GitLab API request failed [GET /x] (status 500)", method="GET", endpoint="/x")
        assert format_error(error) == "GitLab API request failed [GET /x] (status 500)"
        assert format_error(RuntimeError()) == "RuntimeError"

    def test_debug_errors_include_traceback(self):
        try:
            raise ValueError("bad value")
        except ValueError as e:
            error = e

        set_debug_errors(True)
        try:
            rendered = format_error(error)
        finally:
            set_debug_errors(False)

        assert rendered.startswith("Traceback")
        assert rendered.endswith("ValueError: bad value")
