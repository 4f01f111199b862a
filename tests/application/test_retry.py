from unittest.mock import AsyncMock, patch

import httpx
import pytest

from flashsync.application.retry import classify_error, retry_with_backoff
from flashsync.domain.errors import (
    PermissionDeniedError,
    RemoteError,
    TransientRemoteError,
    ValidationError,
)


def _status_error(status):
    request = httpx.Request("GET", "http://store.test/documents/x")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError("boom", request=request, response=response)


@pytest.mark.parametrize(
    "exc, expected, retryable",
    [
        (_status_error(503), TransientRemoteError, True),
        (_status_error(429), TransientRemoteError, True),
        (_status_error(403), PermissionDeniedError, False),
        (_status_error(400), RemoteError, False),
        (httpx.ConnectError("refused"), TransientRemoteError, True),
        (httpx.ReadTimeout("slow"), TransientRemoteError, True),
        (TimeoutError(), TransientRemoteError, True),
        (ConnectionResetError(), TransientRemoteError, True),
        (PermissionError("nope"), PermissionDeniedError, False),
        (RuntimeError("weird"), RemoteError, False),
    ],
)
def test_classify_error(exc, expected, retryable):
    error = classify_error(exc)
    assert type(error) is expected
    assert error.retryable is retryable


def test_classify_passes_taxonomy_errors_through():
    error = ValidationError("bad")
    assert classify_error(error) is error


def test_app_error_carries_code_and_flag():
    app_error = TransientRemoteError("offline").to_app_error()
    assert app_error.code == "NETWORK_ERROR"
    assert app_error.retryable is True
    assert app_error.message == "offline"


@pytest.mark.asyncio
async def test_retries_transient_errors_until_success():
    op = AsyncMock(side_effect=[TransientRemoteError("a"), TransientRemoteError("b"), "ok"])
    result = await retry_with_backoff(op, max_attempts=3, base_delay=0)
    assert result == "ok"
    assert op.await_count == 3


@pytest.mark.asyncio
async def test_non_retryable_errors_fail_fast():
    op = AsyncMock(side_effect=PermissionDeniedError("denied"))
    with pytest.raises(PermissionDeniedError):
        await retry_with_backoff(op, max_attempts=3, base_delay=0)
    assert op.await_count == 1


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts():
    op = AsyncMock(side_effect=httpx.ConnectError("refused"))
    with pytest.raises(TransientRemoteError) as exc_info:
        await retry_with_backoff(op, max_attempts=3, base_delay=0)
    assert op.await_count == 3
    assert isinstance(exc_info.value.__cause__, httpx.ConnectError)


@pytest.mark.asyncio
async def test_backoff_is_exponential_and_capped():
    op = AsyncMock(side_effect=TransientRemoteError("down"))
    with patch("flashsync.application.retry.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        with pytest.raises(TransientRemoteError):
            await retry_with_backoff(op, max_attempts=5, base_delay=1.0, max_delay=5.0)

    delays = [call.args[0] for call in mock_sleep.await_args_list]
    assert delays == [1.0, 2.0, 4.0, 5.0]
