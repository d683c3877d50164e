"""Tests for the retry decorators."""

import pytest

from cci_migration.client.exceptions import AuthenticationError, NetworkError
from cci_migration.utils.retry import retry_with_backoff


async def test_backoff_retries_transient_errors():
    calls = []

    @retry_with_backoff(max_attempts=3, min_wait=0, max_wait=0)
    async def flaky() -> str:
        calls.append(1)
        if len(calls) < 3:
            raise NetworkError("connection reset")
        return "ok"

    assert await flaky() == "ok"
    assert len(calls) == 3


async def test_backoff_reraises_other_errors_immediately():
    calls = []

    @retry_with_backoff(max_attempts=3, min_wait=0, max_wait=0)
    async def unauthorized() -> None:
        calls.append(1)
        raise AuthenticationError("bad token", status_code=401)

    with pytest.raises(AuthenticationError):
        await unauthorized()
    assert len(calls) == 1
