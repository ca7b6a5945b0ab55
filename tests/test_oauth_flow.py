import errno
import json
import socket
import threading
import time
from unittest.mock import MagicMock, Mock, PropertyMock, patch
from urllib.parse import parse_qs, urlsplit

import pytest
import requests
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.errors import HttpError

from timespent.credential_store import CALENDAR_SCOPES, CredentialStore, load_client_secrets
from timespent.exceptions import AuthorizationError, ConfigError
from timespent.oauth_flow import (
    REDIRECT_PORT,
    REDIRECT_URI,
    SUCCESS_MESSAGE,
    FlowState,
    LocalServerReceiver,
    ManualCodeReceiver,
    OAuthFlowRunner,
    exchange_code,
)
from timespent.token_validator import TokenValidator


@pytest.fixture
def client_secrets_path(tmp_path):
    path = tmp_path / "credentials.json"
    path.write_text(
        json.dumps(
            {
                "installed": {
                    "client_id": "cid.apps.googleusercontent.com",
                    "client_secret": "csecret",
                    "auth_uri": "https://accounts.google.com/o/oauth2/auth",
                    "token_uri": "https://oauth2.googleapis.com/token",
                    "redirect_uris": ["http://localhost"],
                }
            }
        )
    )
    return path


@pytest.fixture
def store(tmp_path):
    return CredentialStore(tmp_path / "token.json")


@pytest.fixture
def saved_token(store):
    store.token_path.write_text(
        json.dumps(
            {
                "type": "authorized_user",
                "client_id": "cid",
                "client_secret": "csecret",
                "refresh_token": "stale-refresh",
            }
        )
    )
    return store.token_path


def working_validator():
    service = MagicMock()
    service.events.return_value.list.return_value.execute.return_value = {"items": []}
    return TokenValidator(service_factory=lambda credentials: service)


def revoked_validator():
    def factory(credentials):
        service = MagicMock()
        service.events.return_value.list.return_value.execute.side_effect = HttpError(
            Mock(status=401, reason="Unauthorized"), b"{}"
        )
        return service

    return TokenValidator(service_factory=factory)


def printed_auth_url(output: str) -> str:
    return next(line for line in output.splitlines() if line.startswith("https://"))


def make_flow(client_secrets_path):
    return InstalledAppFlow.from_client_config(load_client_secrets(client_secrets_path), scopes=CALENDAR_SCOPES)


def fresh_credentials():
    return Credentials(token="access", refresh_token="fresh-refresh", client_id="cid", client_secret="cs")


# --- TokenValidator ---


def test_validator_accepts_working_token():
    assert working_validator().validate(Mock()) is True


def test_validator_rejects_on_http_error():
    assert revoked_validator().validate(Mock()) is False


def test_validator_rejects_on_network_error():
    validator = TokenValidator(service_factory=Mock(side_effect=requests.ConnectionError("offline")))
    assert validator.validate(Mock()) is False


def test_validator_requests_one_event():
    service = MagicMock()
    TokenValidator("team@example.com", service_factory=lambda c: service).validate(Mock())

    kwargs = service.events.return_value.list.call_args.kwargs
    assert kwargs["calendarId"] == "team@example.com"
    assert kwargs["maxResults"] == 1


# --- OAuthFlowRunner ---


def test_valid_saved_token_skips_consent(store, saved_token, client_secrets_path, capsys):
    receiver = Mock()
    runner = OAuthFlowRunner(store, client_secrets_path, working_validator(), receiver=receiver)

    credentials = runner.authorize()

    assert credentials.refresh_token == "stale-refresh"
    assert runner.history == [FlowState.AUTHORIZED]
    receiver.run.assert_not_called()
    assert "visiting this URL" not in capsys.readouterr().out


def test_missing_token_prints_consent_url_with_calendar_scope(store, client_secrets_path, capsys):
    """With no saved token, the consent URL asks for read-only calendar access."""
    receiver = ManualCodeReceiver(input_func=lambda prompt: "")
    runner = OAuthFlowRunner(store, client_secrets_path, working_validator(), receiver=receiver)

    with pytest.raises(AuthorizationError, match="No authorization code"):
        runner.authorize()

    query = parse_qs(urlsplit(printed_auth_url(capsys.readouterr().out)).query)
    assert query["scope"] == [" ".join(CALENDAR_SCOPES)]
    assert query["scope"] == ["https://www.googleapis.com/auth/calendar.readonly"]
    assert query["access_type"] == ["offline"]
    assert query["prompt"] == ["consent"]
    assert query["redirect_uri"] == ["http://localhost:8888/"]
    assert runner.history == [
        FlowState.NO_CREDENTIAL,
        FlowState.AWAITING_USER_CONSENT,
        FlowState.AWAITING_CALLBACK,
    ]
    assert not store.token_path.exists()


def test_revoked_token_is_deleted_before_reauthorizing(store, saved_token, client_secrets_path):
    receiver = Mock()
    receiver.run.side_effect = AuthorizationError("No authorization code received")
    runner = OAuthFlowRunner(store, client_secrets_path, revoked_validator(), receiver=receiver)

    with pytest.raises(AuthorizationError):
        runner.authorize()

    assert not saved_token.exists()
    assert runner.history[:2] == [FlowState.INVALID_CREDENTIAL, FlowState.NO_CREDENTIAL]
    assert runner.state is FlowState.AWAITING_CALLBACK


def test_successful_flow_saves_token(store, client_secrets_path):
    fresh = fresh_credentials()
    receiver = Mock()
    receiver.run.return_value = fresh
    runner = OAuthFlowRunner(store, client_secrets_path, working_validator(), receiver=receiver)

    credentials = runner.authorize()

    assert credentials is fresh
    flow = receiver.run.call_args.args[0]
    assert isinstance(flow, InstalledAppFlow)
    assert flow.client_config["client_id"] == "cid.apps.googleusercontent.com"
    assert json.loads(store.token_path.read_text())["refresh_token"] == "fresh-refresh"
    assert runner.history == [
        FlowState.NO_CREDENTIAL,
        FlowState.AWAITING_USER_CONSENT,
        FlowState.AWAITING_CALLBACK,
        FlowState.AUTHORIZED,
    ]


def test_failed_exchange_leaves_no_token(store, client_secrets_path):
    receiver = ManualCodeReceiver(input_func=lambda prompt: "bad-code")
    runner = OAuthFlowRunner(store, client_secrets_path, working_validator(), receiver=receiver)

    with patch("timespent.oauth_flow.exchange_code", side_effect=ValueError("invalid_grant")):
        with pytest.raises(AuthorizationError, match="invalid_grant"):
            runner.authorize()

    assert not store.token_path.exists()


def test_missing_client_secrets_is_config_error(store, tmp_path):
    receiver = Mock()
    runner = OAuthFlowRunner(store, tmp_path / "missing.json", working_validator(), receiver=receiver)
    with pytest.raises(ConfigError):
        runner.authorize()
    receiver.run.assert_not_called()


def test_runner_defaults_to_local_server(store, client_secrets_path):
    runner = OAuthFlowRunner(store, client_secrets_path, working_validator())
    assert isinstance(runner.receiver, LocalServerReceiver)
    assert runner.receiver.port == REDIRECT_PORT


# --- ManualCodeReceiver ---


@patch("timespent.oauth_flow.exchange_code")
def test_manual_receiver_accepts_bare_code(mock_exchange, client_secrets_path):
    flow = make_flow(client_secrets_path)
    mock_exchange.return_value = "creds"
    receiver = ManualCodeReceiver(input_func=lambda prompt: "  4/abc  ")

    assert receiver.run(flow) == "creds"
    mock_exchange.assert_called_once_with(flow, "4/abc")
    assert flow.redirect_uri == REDIRECT_URI


@patch("timespent.oauth_flow.exchange_code")
def test_manual_receiver_accepts_redirect_url(mock_exchange, client_secrets_path):
    flow = make_flow(client_secrets_path)
    receiver = ManualCodeReceiver(
        redirect_uri="http://localhost:9999/",
        input_func=lambda prompt: "http://localhost:9999/?code=4/xyz&scope=calendar",
    )

    receiver.run(flow)

    mock_exchange.assert_called_once_with(flow, "4/xyz")
    assert flow.redirect_uri == "http://localhost:9999/"


def test_manual_receiver_rejects_empty_input(client_secrets_path):
    with pytest.raises(AuthorizationError):
        ManualCodeReceiver(input_func=lambda prompt: "").run(make_flow(client_secrets_path))


def test_exchange_code_uses_flow_token():
    flow = Mock()
    assert exchange_code(flow, "4/abc") is flow.credentials
    flow.fetch_token.assert_called_once_with(code="4/abc")


# --- LocalServerReceiver ---


def test_local_server_receiver_runs_flow_on_fixed_port():
    flow = Mock()
    flow.run_local_server.return_value = "creds"

    assert LocalServerReceiver().run(flow) == "creds"

    kwargs = flow.run_local_server.call_args.kwargs
    assert kwargs["host"] == "localhost"
    assert kwargs["port"] == 8888
    assert kwargs["open_browser"] is False
    assert kwargs["success_message"] == SUCCESS_MESSAGE
    assert "{url}" in kwargs["authorization_prompt_message"]
    assert kwargs["access_type"] == "offline"
    assert kwargs["prompt"] == "consent"


def test_local_server_receiver_port_in_use():
    flow = Mock()
    flow.run_local_server.side_effect = OSError(errno.EADDRINUSE, "Address already in use")

    with pytest.raises(AuthorizationError, match="Port 8888 is already in use"):
        LocalServerReceiver().run(flow)


def test_local_server_receiver_wraps_exchange_failure():
    flow = Mock()
    flow.run_local_server.side_effect = ValueError("(invalid_grant) Bad Request")

    with pytest.raises(AuthorizationError, match="Error during token exchange"):
        LocalServerReceiver().run(flow)


def test_local_server_receiver_network_failure_is_not_a_port_error():
    flow = Mock()
    flow.run_local_server.side_effect = requests.ConnectionError("token endpoint unreachable")

    with pytest.raises(AuthorizationError, match="Error during token exchange"):
        LocalServerReceiver().run(flow)


class ServerThread:
    """Run LocalServerReceiver.run in the background on an ephemeral port"""

    def __init__(self, flow):
        self.flow = flow
        self.result = None
        self.error = None
        self.thread = threading.Thread(target=self._run, daemon=True)
        self.thread.start()

    def _run(self):
        try:
            self.result = LocalServerReceiver(host="127.0.0.1", port=0).run(self.flow)
        except Exception as e:
            self.error = e

    def redirect_uri(self):
        # run_local_server sets the redirect once the socket is bound
        for _ in range(500):
            if self.flow.redirect_uri:
                return self.flow.redirect_uri
            time.sleep(0.01)
        raise AssertionError("local server never started")

    def get(self, query):
        return requests.get(f"{self.redirect_uri()}?{query}", timeout=5)

    def join(self):
        self.thread.join(timeout=5)
        assert not self.thread.is_alive()


def test_local_server_exchanges_redirect_and_closes(client_secrets_path, capsys):
    flow = make_flow(client_secrets_path)
    flow.fetch_token = Mock()
    fresh = fresh_credentials()

    with patch.object(InstalledAppFlow, "credentials", new_callable=PropertyMock, return_value=fresh):
        background = ServerThread(flow)
        response = background.get("code=abc123&scope=x")
        background.join()

    assert response.status_code == 200
    assert "Authentication successful" in response.text
    assert background.error is None
    assert background.result is fresh
    assert "code=abc123" in flow.fetch_token.call_args.kwargs["authorization_response"]
    assert "visiting this URL" in capsys.readouterr().out

    # The port is free again once run() returns
    port = urlsplit(flow.redirect_uri).port
    with socket.socket() as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind(("127.0.0.1", port))


def test_local_server_without_code_fails(client_secrets_path):
    flow = make_flow(client_secrets_path)
    flow.fetch_token = Mock(side_effect=ValueError("Missing code parameter in response."))

    background = ServerThread(flow)
    background.get("error=access_denied")
    background.join()

    assert isinstance(background.error, AuthorizationError)
    assert "Missing code" in str(background.error)
