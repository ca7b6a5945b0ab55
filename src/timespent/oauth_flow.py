"""
OAuth Flow

Authorize calendar access for the installed app. A saved token is reused while
it still works; otherwise the user is sent through Google's consent screen and
the authorization code comes back either through the one-shot local server
that InstalledAppFlow runs, or by pasting it into the terminal.
"""

import errno
import logging
from enum import Enum
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import parse_qs, urlsplit

from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

from timespent.credential_store import CALENDAR_SCOPES, CredentialStore, load_client_secrets
from timespent.exceptions import AuthorizationError
from timespent.token_validator import TokenValidator

logger = logging.getLogger(__name__)

REDIRECT_HOST = "localhost"
REDIRECT_PORT = 8888
REDIRECT_URI = f"http://{REDIRECT_HOST}:{REDIRECT_PORT}/"

# prompt=consent makes Google return a refresh token every time
AUTHORIZATION_PARAMS = {"access_type": "offline", "prompt": "consent"}

AUTHORIZATION_PROMPT = "\nAuthorize this app by visiting this URL:\n{url}\n\nWaiting for authorization..."
SUCCESS_MESSAGE = "Authentication successful! You can close this window and return to the terminal."


class FlowState(Enum):
    NO_CREDENTIAL = "no_credential"
    INVALID_CREDENTIAL = "invalid_credential"
    AWAITING_USER_CONSENT = "awaiting_user_consent"
    AWAITING_CALLBACK = "awaiting_callback"
    AUTHORIZED = "authorized"


def exchange_code(flow: InstalledAppFlow, code: str) -> Credentials:
    """Trade an authorization code for credentials"""
    flow.fetch_token(code=code)
    return flow.credentials


class LocalServerReceiver:
    """
    Catch the redirect with InstalledAppFlow's local server

    The server binds the fixed port, answers exactly one request, exchanges
    the code and is closed before run() returns or raises.
    """

    def __init__(self, host: str = REDIRECT_HOST, port: int = REDIRECT_PORT, open_browser: bool = False):
        self.host = host
        self.port = port
        self.open_browser = open_browser

    def run(self, flow: InstalledAppFlow) -> Credentials:
        """
        Print the consent URL and wait for Google's redirect

        Raises:
            AuthorizationError: Port already in use, or the exchange failed
        """
        logger.info(f"OAuth server listening on {self.host}:{self.port}")
        try:
            return flow.run_local_server(
                host=self.host,
                port=self.port,
                open_browser=self.open_browser,
                authorization_prompt_message=AUTHORIZATION_PROMPT,
                success_message=SUCCESS_MESSAGE,
                **AUTHORIZATION_PARAMS,
            )
        except Exception as e:
            if isinstance(e, OSError) and e.errno == errno.EADDRINUSE:
                raise AuthorizationError(f"Port {self.port} is already in use; pick another with --port") from e
            logger.error(f"Error during token exchange: {e}")
            raise AuthorizationError(f"Error during token exchange: {e}") from e


class ManualCodeReceiver:
    """Ask the user to paste the authorization code (or the whole redirect URL)"""

    def __init__(self, redirect_uri: str = REDIRECT_URI, input_func: Callable[[str], str] = input):
        self.redirect_uri = redirect_uri
        self.input_func = input_func

    def run(self, flow: InstalledAppFlow) -> Credentials:
        flow.redirect_uri = self.redirect_uri
        auth_url, _ = flow.authorization_url(**AUTHORIZATION_PARAMS)
        print(AUTHORIZATION_PROMPT.format(url=auth_url), flush=True)

        pasted = self.input_func("Enter the code (or the full redirect URL) here: ").strip()

        # Accept the full redirect URL as well as the bare code
        if "code=" in pasted:
            pasted = parse_qs(urlsplit(pasted).query).get("code", [""])[0]

        if not pasted:
            raise AuthorizationError("No authorization code entered")

        try:
            return exchange_code(flow, pasted)
        except Exception as e:
            raise AuthorizationError(f"Error during token exchange: {e}") from e


class OAuthFlowRunner:
    """Drive a saved token, or a fresh consent, to an authorized credential"""

    def __init__(
        self,
        store: CredentialStore,
        client_secrets_path: Path,
        validator: TokenValidator,
        receiver=None,
        scopes: Optional[list] = None,
    ):
        self.store = store
        self.client_secrets_path = Path(client_secrets_path)
        self.validator = validator
        self.scopes = scopes or CALENDAR_SCOPES
        self.receiver = receiver or LocalServerReceiver()

        self.state: Optional[FlowState] = None
        self.history: list[FlowState] = []

    def _enter(self, state: FlowState):
        self.state = state
        self.history.append(state)
        logger.debug(f"OAuth flow state: {state.value}")

    def authorize(self) -> Credentials:
        """
        Return working credentials, running the consent flow if needed

        Returns:
            Authorized credentials, already saved to the store

        Raises:
            ConfigError: Client secret file missing or malformed
            AuthorizationError: Callback carried no code or the exchange failed
        """
        credentials = self.store.load()

        if credentials is not None:
            if self.validator.validate(credentials):
                self._enter(FlowState.AUTHORIZED)
                return credentials

            self._enter(FlowState.INVALID_CREDENTIAL)
            logger.info("Token is invalid or expired.")
            self.store.delete()

        self._enter(FlowState.NO_CREDENTIAL)
        logger.info("No valid token found. Starting OAuth flow...")

        flow = InstalledAppFlow.from_client_config(
            load_client_secrets(self.client_secrets_path),
            scopes=self.scopes,
        )

        # The receiver prints the consent URL, then blocks until the code arrives
        self._enter(FlowState.AWAITING_USER_CONSENT)
        self._enter(FlowState.AWAITING_CALLBACK)
        credentials = self.receiver.run(flow)

        self.store.save(credentials)
        self._enter(FlowState.AUTHORIZED)
        logger.info("Authorization successful! Token saved.")
        return credentials
