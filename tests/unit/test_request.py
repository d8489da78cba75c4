r"""Unit tests for the request executor."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING
from unittest.mock import Mock, call, patch

import httpx
import pytest

from sdwanet import (
    ApplicationError,
    ClientError,
    OutboundRequest,
    RateLimitedError,
    RequestCancelledError,
    RequestTimeoutError,
    Result,
    ServerError,
    Session,
    TransportError,
    execute_request,
)
from sdwanet.request import State

if TYPE_CHECKING:
    from collections.abc import Callable

TEST_URL = "https://vmanage.example.com"
DEVICE_URL = f"{TEST_URL}/dataservice/device"


def _sequence_handler(
    responses: list[httpx.Response | Exception], requests: list[httpx.Request]
) -> Callable[[httpx.Request], httpx.Response]:
    """Answer each request with the next response, or raise the next
    exception."""
    outcomes = iter(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        outcome = next(outcomes)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    return handler


@pytest.fixture
def requests() -> list[httpx.Request]:
    return []


#######################################################
#     Tests for execute_request                       #
#######################################################


def test_execute_request_successful_request(
    authenticated_session: Session,
    make_http_client: Callable,
    requests: list[httpx.Request],
    mock_sleep: Mock,
) -> None:
    client = make_http_client(
        _sequence_handler([httpx.Response(200, json={"data": [{"deviceId": "1"}]})], requests)
    )

    result = execute_request(
        client, authenticated_session, OutboundRequest("GET", "/dataservice/device")
    )

    assert result.get("data.0.deviceId") == "1"
    assert len(requests) == 1
    assert str(requests[0].url) == DEVICE_URL
    assert requests[0].headers["X-XSRF-TOKEN"] == "tok"
    mock_sleep.assert_not_called()


def test_execute_request_sends_extra_headers(
    authenticated_session: Session,
    make_http_client: Callable,
    requests: list[httpx.Request],
    mock_sleep: Mock,
) -> None:
    client = make_http_client(_sequence_handler([httpx.Response(200)], requests))

    execute_request(
        client,
        authenticated_session,
        OutboundRequest("GET", "/dataservice/device", headers={"Accept": "application/json"}),
    )

    assert requests[0].headers["Accept"] == "application/json"


def test_execute_request_empty_success_response(
    authenticated_session: Session,
    make_http_client: Callable,
    requests: list[httpx.Request],
    mock_sleep: Mock,
) -> None:
    client = make_http_client(_sequence_handler([httpx.Response(204)], requests))

    result = execute_request(
        client, authenticated_session, OutboundRequest("DELETE", "/dataservice/device/1")
    )

    assert result == Result(raw=b"")


def test_execute_request_retries_connection_errors(
    authenticated_session: Session,
    make_http_client: Callable,
    requests: list[httpx.Request],
    mock_sleep: Mock,
) -> None:
    """Test two connection failures followed by a 200 with an empty
    error object."""
    client = make_http_client(
        _sequence_handler(
            [
                httpx.ConnectError("Connection refused"),
                httpx.ConnectError("Connection refused"),
                httpx.Response(200, content=b'{"error":{}}'),
            ],
            requests,
        )
    )

    result = execute_request(
        client, authenticated_session, OutboundRequest("GET", "/dataservice/device")
    )

    assert result.raw == b'{"error":{}}'
    assert result.value == {"error": {}}
    assert len(requests) == 3
    assert mock_sleep.call_args_list == [call(2.0), call(6.0)]


def test_execute_request_retries_read_errors(
    authenticated_session: Session,
    make_http_client: Callable,
    requests: list[httpx.Request],
    mock_sleep: Mock,
) -> None:
    client = make_http_client(
        _sequence_handler(
            [httpx.ReadError("Connection reset"), httpx.Response(200, json={})], requests
        )
    )

    execute_request(client, authenticated_session, OutboundRequest("GET", "/dataservice/device"))

    assert len(requests) == 2
    mock_sleep.assert_called_once_with(2.0)


def test_execute_request_connection_errors_exhausted(
    authenticated_session: Session,
    make_http_client: Callable,
    requests: list[httpx.Request],
    mock_sleep: Mock,
) -> None:
    error = httpx.ConnectError("Connection refused")
    client = make_http_client(_sequence_handler([error] * 4, requests))

    with pytest.raises(TransportError, match=r"after 4 attempts") as exc_info:
        execute_request(
            client, authenticated_session, OutboundRequest("GET", "/dataservice/device")
        )

    assert exc_info.value.__cause__ is error
    assert exc_info.value.status_code is None
    assert exc_info.value.result is None
    assert len(requests) == 4
    assert mock_sleep.call_args_list == [call(2.0), call(6.0), call(18.0)]


def test_execute_request_timeouts_exhausted(
    authenticated_session: Session,
    make_http_client: Callable,
    requests: list[httpx.Request],
    mock_sleep: Mock,
) -> None:
    client = make_http_client(
        _sequence_handler([httpx.ReadTimeout("Read timed out") for _ in range(4)], requests)
    )

    with pytest.raises(RequestTimeoutError, match=r"timed out after 4 attempts") as exc_info:
        execute_request(
            client, authenticated_session, OutboundRequest("PUT", "/dataservice/device", b"{}")
        )

    assert isinstance(exc_info.value, TransportError)
    assert isinstance(exc_info.value.__cause__, httpx.ReadTimeout)
    assert len(requests) == 4


@pytest.mark.parametrize("status_code", [408, 500, 502, 503, 504, 599])
def test_execute_request_retries_server_errors(
    authenticated_session: Session,
    make_http_client: Callable,
    requests: list[httpx.Request],
    mock_sleep: Mock,
    status_code: int,
) -> None:
    client = make_http_client(
        _sequence_handler([httpx.Response(status_code), httpx.Response(200, json={})], requests)
    )

    execute_request(client, authenticated_session, OutboundRequest("GET", "/dataservice/device"))

    assert len(requests) == 2
    mock_sleep.assert_called_once_with(2.0)


def test_execute_request_server_errors_exhausted(
    authenticated_session: Session,
    make_http_client: Callable,
    requests: list[httpx.Request],
    mock_sleep: Mock,
) -> None:
    client = make_http_client(
        _sequence_handler(
            [httpx.Response(503, json={"attempt": attempt}) for attempt in range(4)], requests
        )
    )

    with pytest.raises(ServerError, match=r"failed with status 503 after 4 attempts") as exc_info:
        execute_request(
            client, authenticated_session, OutboundRequest("GET", "/dataservice/device")
        )

    error = exc_info.value
    assert error.status_code == 503
    assert error.method == "GET"
    assert error.url == DEVICE_URL
    assert error.result.get("attempt") == 3
    assert error.response.status_code == 503
    assert mock_sleep.call_args_list == [call(2.0), call(6.0), call(18.0)]


def test_execute_request_rate_limited_retry_after(
    authenticated_session: Session,
    make_http_client: Callable,
    requests: list[httpx.Request],
    mock_sleep: Mock,
    mock_random: Mock,
) -> None:
    """Test that Retry-After: 5 waits exactly 5 seconds, without
    jitter."""
    client = make_http_client(
        _sequence_handler(
            [httpx.Response(429, headers={"Retry-After": "5"}), httpx.Response(200, json={})],
            requests,
        )
    )

    execute_request(client, authenticated_session, OutboundRequest("GET", "/dataservice/device"))

    assert len(requests) == 2
    mock_sleep.assert_called_once_with(5.0)
    mock_random.assert_not_called()


@pytest.mark.parametrize(
    ("headers", "delay"),
    [
        ({"Retry-After": "0"}, 1.0),
        ({}, 15.0),
        ({"Retry-After": "later"}, 15.0),
        ({"Retry-After": "inf"}, 15.0),
    ],
)
def test_execute_request_rate_limited_default_waits(
    authenticated_session: Session,
    make_http_client: Callable,
    requests: list[httpx.Request],
    mock_sleep: Mock,
    headers: dict[str, str],
    delay: float,
) -> None:
    client = make_http_client(
        _sequence_handler(
            [httpx.Response(429, headers=headers), httpx.Response(200, json={})], requests
        )
    )

    execute_request(client, authenticated_session, OutboundRequest("GET", "/dataservice/device"))

    mock_sleep.assert_called_once_with(delay)


def test_execute_request_rate_limited_exhausted(
    authenticated_session: Session,
    make_http_client: Callable,
    requests: list[httpx.Request],
    mock_sleep: Mock,
) -> None:
    client = make_http_client(
        _sequence_handler(
            [httpx.Response(429, headers={"Retry-After": "2"}) for _ in range(4)], requests
        )
    )

    with pytest.raises(RateLimitedError) as exc_info:
        execute_request(
            client, authenticated_session, OutboundRequest("GET", "/dataservice/device")
        )

    assert exc_info.value.status_code == 429
    assert len(requests) == 4
    assert mock_sleep.call_args_list == [call(2.0), call(2.0), call(2.0)]


@pytest.mark.parametrize("status_code", [400, 401, 403, 404, 409, 422, 302])
def test_execute_request_client_error_is_fatal(
    authenticated_session: Session,
    make_http_client: Callable,
    requests: list[httpx.Request],
    mock_sleep: Mock,
    status_code: int,
) -> None:
    client = make_http_client(
        _sequence_handler(
            [httpx.Response(status_code, json={"error": {"message": "Not Found"}})], requests
        )
    )

    with pytest.raises(ClientError, match=rf"failed with status {status_code}$") as exc_info:
        execute_request(
            client, authenticated_session, OutboundRequest("GET", "/dataservice/device")
        )

    assert exc_info.value.status_code == status_code
    assert exc_info.value.result.get("error.message") == "Not Found"
    assert len(requests) == 1
    mock_sleep.assert_not_called()


def test_execute_request_application_error(
    authenticated_session: Session,
    make_http_client: Callable,
    requests: list[httpx.Request],
    mock_sleep: Mock,
) -> None:
    client = make_http_client(
        _sequence_handler([httpx.Response(200, content=b'{"error":{"code":"E1"}}')], requests)
    )

    with pytest.raises(ApplicationError, match=r"JSON error") as exc_info:
        execute_request(
            client, authenticated_session, OutboundRequest("GET", "/dataservice/device")
        )

    assert exc_info.value.result.raw == b'{"error":{"code":"E1"}}'
    assert exc_info.value.result.get("error.code") == "E1"
    assert len(requests) == 1
    mock_sleep.assert_not_called()


@pytest.mark.parametrize(
    "content", [b'{"error":{"code":500}}', b'{"error":{"code":false}}', b'{"error":{"code":{}}}']
)
def test_execute_request_non_string_error_code_is_success(
    authenticated_session: Session,
    make_http_client: Callable,
    requests: list[httpx.Request],
    content: bytes,
) -> None:
    client = make_http_client(_sequence_handler([httpx.Response(200, content=content)], requests))

    result = execute_request(
        client, authenticated_session, OutboundRequest("GET", "/dataservice/device")
    )

    assert result.raw == content


def test_execute_request_body_identical_across_retries(
    authenticated_session: Session,
    make_http_client: Callable,
    requests: list[httpx.Request],
    mock_sleep: Mock,
) -> None:
    body = b'{"name": "site-1", "devices": [1, 2, 3]}'
    client = make_http_client(
        _sequence_handler(
            [
                httpx.Response(500),
                httpx.ConnectError("Connection refused"),
                httpx.Response(200, json={}),
            ],
            requests,
        )
    )

    execute_request(
        client, authenticated_session, OutboundRequest("POST", "/dataservice/template", body)
    )

    assert [request.content for request in requests] == [body, body, body]
    assert len({id(request) for request in requests}) == 3


def test_execute_request_authenticates_first(
    session: Session,
    make_http_client: Callable,
    requests: list[httpx.Request],
    mock_sleep: Mock,
) -> None:
    client = make_http_client(
        _sequence_handler(
            [
                httpx.Response(200),
                httpx.Response(200, text="abc123"),
                httpx.Response(200, json={"data": []}),
            ],
            requests,
        )
    )

    execute_request(client, session, OutboundRequest("GET", "/dataservice/device"))

    assert [request.url.path for request in requests] == [
        "/j_security_check",
        "/dataservice/client/token",
        "/dataservice/device",
    ]
    assert "X-XSRF-TOKEN" not in requests[0].headers
    assert requests[2].headers["X-XSRF-TOKEN"] == "abc123"
    assert session.token == "abc123"


def test_execute_request_cancelled_before_first_attempt(
    authenticated_session: Session,
    make_http_client: Callable,
    requests: list[httpx.Request],
    mock_sleep: Mock,
) -> None:
    client = make_http_client(_sequence_handler([httpx.Response(200)], requests))
    event = threading.Event()
    event.set()

    with pytest.raises(RequestCancelledError, match=r"was cancelled"):
        execute_request(
            client,
            authenticated_session,
            OutboundRequest("GET", "/dataservice/device"),
            cancel_event=event,
        )

    assert requests == []


def test_execute_request_cancelled_during_backoff(
    authenticated_session: Session,
    make_http_client: Callable,
    requests: list[httpx.Request],
    mock_sleep: Mock,
) -> None:
    event = threading.Event()

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        event.set()
        return httpx.Response(503, json={"busy": True})

    client = make_http_client(handler)

    with pytest.raises(RequestCancelledError) as exc_info:
        execute_request(
            client,
            authenticated_session,
            OutboundRequest("GET", "/dataservice/device"),
            cancel_event=event,
        )

    assert len(requests) == 1
    assert exc_info.value.result.get("busy") is True
    mock_sleep.assert_not_called()


def test_execute_request_state_transitions(
    authenticated_session: Session,
    make_http_client: Callable,
    requests: list[httpx.Request],
    mock_sleep: Mock,
) -> None:
    client = make_http_client(
        _sequence_handler([httpx.Response(503), httpx.Response(200, json={})], requests)
    )

    with patch("sdwanet.request._log_transition") as observer:
        execute_request(
            client, authenticated_session, OutboundRequest("GET", "/dataservice/device")
        )

    assert [args[0][0] for args in observer.call_args_list] == [
        State.SENDING,
        State.CLASSIFY_RETRY,
        State.BACKOFF,
        State.SENDING,
        State.SUCCESS,
    ]


def test_execute_request_fatal_state_transitions(
    authenticated_session: Session,
    make_http_client: Callable,
    requests: list[httpx.Request],
    mock_sleep: Mock,
) -> None:
    client = make_http_client(_sequence_handler([httpx.Response(404)], requests))

    with (
        patch("sdwanet.request._log_transition") as observer,
        pytest.raises(ClientError),
    ):
        execute_request(
            client, authenticated_session, OutboundRequest("GET", "/dataservice/device")
        )

    assert [args[0][0] for args in observer.call_args_list] == [
        State.SENDING,
        State.CLASSIFY_FATAL,
        State.DONE,
    ]


def test_execute_request_logs_payload(
    authenticated_session: Session,
    make_http_client: Callable,
    requests: list[httpx.Request],
    caplog: pytest.LogCaptureFixture,
) -> None:
    client = make_http_client(_sequence_handler([httpx.Response(200, json={"ok": 1})], requests))

    with caplog.at_level(logging.DEBUG, logger="sdwanet.request"):
        execute_request(
            client,
            authenticated_session,
            OutboundRequest("POST", "/dataservice/device", b'{"secret-field": 1}'),
        )

    assert "secret-field" in caplog.text
    assert '{"ok":1}' in caplog.text.replace(" ", "")


def test_execute_request_no_log_payload(
    authenticated_session: Session,
    make_http_client: Callable,
    requests: list[httpx.Request],
    caplog: pytest.LogCaptureFixture,
) -> None:
    client = make_http_client(
        _sequence_handler([httpx.Response(200, json={"response-field": 1})], requests)
    )

    with caplog.at_level(logging.DEBUG, logger="sdwanet.request"):
        execute_request(
            client,
            authenticated_session,
            OutboundRequest(
                "POST", "/dataservice/device", b'{"secret-field": 1}', log_payload=False
            ),
        )

    assert "HTTP Request: POST" in caplog.text
    assert "secret-field" not in caplog.text
    assert "response-field" not in caplog.text


def test_execute_request_repeated_get_is_idempotent(
    authenticated_session: Session, make_http_client: Callable, mock_sleep: Mock
) -> None:
    client = make_http_client(lambda _: httpx.Response(200, json={"data": [{"deviceId": "1"}]}))
    request = OutboundRequest("GET", "/dataservice/device")

    first = execute_request(client, authenticated_session, request)
    second = execute_request(client, authenticated_session, request)

    assert first == second
    assert first.value == second.value
