"""
Sidecar configuration: GitHub App credentials from mounted secrets, scoping and timing from env.
Loaded once at startup into an immutable Config; no key material in code or logs.

Environment:
  WORKSPACE_REPOS               space-separated repository URLs to scope tokens to
  REFRESH_INTERVAL_MINUTES      minutes between refreshes (default 45)
  TOKEN_PATH                    where the token is written (default /var/run/github/token)
  GITHUB_APP_SECRETS_PATH       directory with app-id, installation-id, private-key
  GITHUB_API_URL                API base URL, for GitHub Enterprise Server
  PUBLISH_RETRY_DELAY_SECONDS   wait after a failed token write (default 0: retry at once)

Mounted secrets (Kubernetes secret):
  <secrets>/app-id, <secrets>/installation-id, <secrets>/private-key (PEM)
"""
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

# Installation tokens expire after 1 hour; refresh at 45 minutes to stay ahead of expiry
DEFAULT_REFRESH_INTERVAL = 45 * 60

# Shared tmpfs volume mounted in both the sidecar and the main container
DEFAULT_TOKEN_PATH = "/var/run/github/token"

DEFAULT_SECRETS_PATH = "/var/run/secrets/github-app"

DEFAULT_API_URL = "https://api.github.com"


class ConfigError(Exception):
    """Required configuration is missing or invalid."""


@dataclass(frozen=True)
class Config:
    app_id: int
    installation_id: int
    private_key: bytes = field(repr=False)
    # Repository names to scope tokens to; empty means every repo in the installation
    repositories: tuple[str, ...] = ()
    refresh_interval: float = DEFAULT_REFRESH_INTERVAL
    token_path: str = DEFAULT_TOKEN_PATH
    api_url: str = DEFAULT_API_URL
    publish_retry_delay: float = 0.0


def load_config(environ: Mapping[str, str] | None = None) -> Config:
    """
    Read mounted secrets and environment into a Config.
    Raises ConfigError naming the missing or invalid item.
    """
    env = os.environ if environ is None else environ
    secrets_dir = Path(env.get("GITHUB_APP_SECRETS_PATH") or DEFAULT_SECRETS_PATH)

    try:
        app_id = read_int_file(secrets_dir / "app-id")
    except (OSError, ValueError) as e:
        raise ConfigError(f"read app-id: {e}") from e
    try:
        installation_id = read_int_file(secrets_dir / "installation-id")
    except (OSError, ValueError) as e:
        raise ConfigError(f"read installation-id: {e}") from e
    try:
        private_key = (secrets_dir / "private-key").read_bytes()
    except OSError as e:
        raise ConfigError(f"read private-key: {e}") from e

    repositories = tuple(parse_repository_names(env.get("WORKSPACE_REPOS", "")))

    refresh_interval = DEFAULT_REFRESH_INTERVAL
    interval_str = env.get("REFRESH_INTERVAL_MINUTES", "")
    if interval_str:
        try:
            minutes = int(interval_str)
        except ValueError as e:
            raise ConfigError(f"invalid REFRESH_INTERVAL_MINUTES: {interval_str!r}") from e
        if minutes <= 0:
            raise ConfigError(f"REFRESH_INTERVAL_MINUTES must be positive, got {minutes}")
        refresh_interval = minutes * 60

    publish_retry_delay = 0.0
    delay_str = env.get("PUBLISH_RETRY_DELAY_SECONDS", "")
    if delay_str:
        try:
            publish_retry_delay = float(delay_str)
        except ValueError as e:
            raise ConfigError(f"invalid PUBLISH_RETRY_DELAY_SECONDS: {delay_str!r}") from e
        if publish_retry_delay < 0:
            raise ConfigError(f"PUBLISH_RETRY_DELAY_SECONDS must not be negative, got {delay_str}")

    return Config(
        app_id=app_id,
        installation_id=installation_id,
        private_key=private_key,
        repositories=repositories,
        refresh_interval=refresh_interval,
        token_path=env.get("TOKEN_PATH") or DEFAULT_TOKEN_PATH,
        api_url=(env.get("GITHUB_API_URL") or DEFAULT_API_URL).rstrip("/"),
        publish_retry_delay=publish_retry_delay,
    )


def parse_repository_names(repos: str) -> list[str]:
    """
    Repository names from whitespace-separated git URLs, for installation token scoping.
    "https://github.com/owner/repo1.git https://github.com/owner/repo2" -> ["repo1", "repo2"]
    The API wants names, not URLs: keep the last path component without ".git".
    """
    names = []
    for url in repos.split():
        parts = url.split("/")
        if len(parts) < 2:
            # Not a URL
            continue
        name = parts[-1].removesuffix(".git")
        if name:
            names.append(name)
    return names


def read_int_file(path: str | os.PathLike) -> int:
    """Integer contents of a file, surrounding whitespace ignored."""
    text = Path(path).read_text().strip()
    try:
        return int(text)
    except ValueError as e:
        raise ValueError(f"parse {path}: {e}") from e
