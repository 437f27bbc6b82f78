"""
GitHub App installation token generation.
Signs a short-lived app JWT (RS256) and exchanges it for an installation access token,
optionally scoped to the configured repositories. Tokens expire after 1 hour and cannot be
refreshed; a new one is generated each cycle.
"""
import logging
import threading
import time
from dataclasses import dataclass, field

import httpx
import jwt
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from token_sidecar.config import Config, ConfigError

logger = logging.getLogger(__name__)

# Backdate iat to allow for clock drift between us and GitHub
JWT_CLOCK_SKEW = 60

# GitHub rejects app JWTs valid for more than 10 minutes
JWT_LIFETIME = 540

# Per phase (connect/read/write/pool)
REQUEST_TIMEOUT_SECONDS = 5.0

# Whole exchange, end to end; per-phase timeouts alone do not bound DNS or a trickling body
REQUEST_DEADLINE_SECONDS = 15.0

# How often a pending request checks the stop event
CANCEL_POLL_SECONDS = 0.1

API_VERSION = "2022-11-28"


class TokenGenerationError(Exception):
    """GitHub did not return an installation token (network error, rejection, bad response)."""


@dataclass(frozen=True)
class InstallationToken:
    token: str = field(repr=False)
    # ISO 8601 expiry as reported by GitHub, if present
    expires_at: str | None = None


def load_private_key(pem: bytes) -> RSAPrivateKey:
    """Parse the app's PEM private key. Raises ConfigError if it is not a usable RSA key."""
    try:
        key = serialization.load_pem_private_key(pem, password=None, backend=default_backend())
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise ConfigError(f"invalid private-key: {e}") from e
    if not isinstance(key, RSAPrivateKey):
        raise ConfigError("invalid private-key: GitHub Apps require an RSA key")
    return key


class TokenGenerator:
    """
    Installation token source for one GitHub App installation.
    Without repositories, tokens have access to every repository in the installation.
    """

    def __init__(
        self,
        config: Config,
        transport: httpx.BaseTransport | None = None,
        request_deadline: float = REQUEST_DEADLINE_SECONDS,
    ):
        self.app_id = config.app_id
        self.installation_id = config.installation_id
        self.repositories = tuple(config.repositories)
        self.request_deadline = request_deadline
        self._private_key = load_private_key(config.private_key)
        self._client = httpx.Client(
            base_url=config.api_url,
            transport=transport,
            timeout=REQUEST_TIMEOUT_SECONDS,
            headers={
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": API_VERSION,
            },
        )

    def build_app_jwt(self, now: float | None = None) -> str:
        """App JWT authenticating as the GitHub App itself (not an installation)."""
        now = int(time.time() if now is None else now)
        payload = {
            "iat": now - JWT_CLOCK_SKEW,
            "exp": now + JWT_LIFETIME,
            "iss": str(self.app_id),
        }
        token = jwt.encode(payload, self._private_key, algorithm="RS256")
        if isinstance(token, bytes):
            token = token.decode("utf-8")
        return token

    def generate(self, stop: threading.Event | None = None) -> InstallationToken:
        """
        Create an installation access token via POST /app/installations/{id}/access_tokens.
        Gives up once `stop` is set or the request deadline passes, whatever the request is
        stuck on (DNS, a trickling response). Raises TokenGenerationError on any failure;
        the cause is chained.
        """
        body = {}
        if self.repositories:
            body["repositories"] = list(self.repositories)
        try:
            app_jwt = self.build_app_jwt()
        except jwt.PyJWTError as e:
            raise TokenGenerationError(f"sign app JWT: {e}") from e

        deadline = time.monotonic() + self.request_deadline
        outcome: dict = {}
        done = threading.Event()

        def _exchange():
            try:
                outcome["response"] = self._post(app_jwt, body, deadline)
            except Exception as e:  # re-raised in the caller's thread
                outcome["error"] = e
            finally:
                done.set()

        # Daemon: a request abandoned on stop must not hold up process exit
        threading.Thread(target=_exchange, name="installation-token", daemon=True).start()
        while not done.wait(CANCEL_POLL_SECONDS):
            if stop is not None and stop.is_set():
                raise TokenGenerationError("create installation token: cancelled")
            if time.monotonic() >= deadline:
                raise TokenGenerationError(
                    f"create installation token: no response within {self.request_deadline:g}s"
                )

        if "error" in outcome:
            e = outcome["error"]
            if isinstance(e, httpx.HTTPError):
                raise TokenGenerationError(f"create installation token: {e}") from e
            raise e
        r = outcome["response"]

        if not r.is_success:
            raise TokenGenerationError(
                f"create installation token: HTTP {r.status_code}: {_error_message(r)}"
            )
        try:
            data = r.json()
        except ValueError as e:
            raise TokenGenerationError(f"create installation token: malformed response: {e}") from e
        token = data.get("token") if isinstance(data, dict) else None
        if not token or not isinstance(token, str):
            raise TokenGenerationError("create installation token: response did not include a token")
        return InstallationToken(token=token, expires_at=data.get("expires_at"))

    def _post(self, app_jwt: str, body: dict, deadline: float) -> httpx.Response:
        """
        Send the token request. The raw body is read in chunks so a trickling response ends
        at `deadline`; the returned Response decodes it as usual.
        """
        with self._client.stream(
            "POST",
            f"/app/installations/{self.installation_id}/access_tokens",
            json=body or None,
            headers={"Authorization": f"Bearer {app_jwt}"},
        ) as r:
            chunks = []
            for chunk in r.iter_raw():
                if time.monotonic() >= deadline:
                    raise httpx.ReadTimeout("response body exceeded request deadline", request=r.request)
                chunks.append(chunk)
            return httpx.Response(r.status_code, headers=r.headers, content=b"".join(chunks), request=r.request)

    def close(self) -> None:
        self._client.close()


def _error_message(r: httpx.Response) -> str:
    """GitHub's error "message" if the body is JSON, else a short slice of the body."""
    try:
        data = r.json()
    except ValueError:
        return r.text[:200] or "(no body)"
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return r.text[:200]
