# ruff: noqa: INP001
"""Settings validation tests for auth mode and runtime knobs."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from agentflow.core.config import AuthMode, Settings

LOCAL_TOKEN_ERROR = (
    "LOCAL_AUTH_TOKEN must be at least 50 characters and non-placeholder when AUTH_MODE=local"
)


@pytest.mark.parametrize("token", ["", "x" * 49, "change-me", "  Replace-Me  "])
def test_local_mode_rejects_weak_tokens(token: str) -> None:
    with pytest.raises(ValidationError, match=LOCAL_TOKEN_ERROR):
        Settings(_env_file=None, auth_mode=AuthMode.LOCAL, local_auth_token=token)


def test_local_mode_accepts_real_token() -> None:
    token = "a" * 50
    configured = Settings(_env_file=None, auth_mode=AuthMode.LOCAL, local_auth_token=token)

    assert configured.auth_mode == AuthMode.LOCAL
    assert configured.local_auth_token == token


def test_clerk_mode_requires_secret_key() -> None:
    with pytest.raises(ValidationError, match="CLERK_SECRET_KEY must be set and non-empty"):
        Settings(_env_file=None, auth_mode=AuthMode.CLERK, clerk_secret_key="   ")


def test_dev_environment_defaults_to_auto_migrate() -> None:
    dev = Settings(
        _env_file=None,
        auth_mode=AuthMode.CLERK,
        clerk_secret_key="sk_test_123",
        environment="dev",
    )
    prod = Settings(
        _env_file=None,
        auth_mode=AuthMode.CLERK,
        clerk_secret_key="sk_test_123",
        environment="prod",
    )

    assert dev.db_auto_migrate is True
    assert prod.db_auto_migrate is False


@pytest.mark.parametrize(
    ("field", "value"),
    [
        ("agent_execution_max_iterations", 0),
        ("agent_execution_iteration_delay_seconds", -1),
        ("llm_request_timeout_seconds", 0),
    ],
)
def test_execution_settings_are_bounded(field: str, value: float) -> None:
    with pytest.raises(ValidationError):
        Settings(
            _env_file=None,
            auth_mode=AuthMode.CLERK,
            clerk_secret_key="sk_test_123",
            **{field: value},
        )
