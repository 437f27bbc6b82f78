"""
Shared fixtures for sidecar tests: an RSA app key, a mounted-secrets directory, app config
and the two recoverable failure kinds.
"""
import pytest
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.rsa import generate_private_key

from token_sidecar.config import Config
from token_sidecar.github_app import TokenGenerationError
from token_sidecar.writer import TokenWriteError


@pytest.fixture(scope="session")
def rsa_key():
    return generate_private_key(65537, 2048, default_backend())


@pytest.fixture(scope="session")
def private_key_pem(rsa_key) -> bytes:
    return rsa_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


@pytest.fixture
def secrets_dir(tmp_path, private_key_pem):
    d = tmp_path / "github-app"
    d.mkdir()
    (d / "app-id").write_text("12345\n")
    (d / "installation-id").write_text(" 67890 ")
    (d / "private-key").write_bytes(private_key_pem)
    return d


@pytest.fixture
def app_config(private_key_pem, tmp_path):
    return Config(
        app_id=12345,
        installation_id=67890,
        private_key=private_key_pem,
        repositories=("repo1", "repo2"),
        token_path=str(tmp_path / "run" / "token"),
        api_url="https://api.github.test",
    )


@pytest.fixture
def gen_error():
    return TokenGenerationError("create installation token: HTTP 502: Bad Gateway")


@pytest.fixture
def write_error():
    return TokenWriteError("rename token file: [Errno 28] No space left on device")
