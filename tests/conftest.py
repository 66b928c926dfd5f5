"""Root conftest: fake AWS credentials so nothing can reach a real account."""

import pytest

from factories import RecordingSleep

_AWS_ENV = {
    "AWS_ACCESS_KEY_ID": "testing",
    "AWS_SECRET_ACCESS_KEY": "testing",  # noqa: S105
    "AWS_SECURITY_TOKEN": "testing",  # noqa: S105
    "AWS_SESSION_TOKEN": "testing",  # noqa: S105
    "AWS_DEFAULT_REGION": "us-east-1",
}


@pytest.fixture(autouse=True)
def _aws_credentials(monkeypatch: pytest.MonkeyPatch):
    """Mocked AWS credentials for every test (prevents real AWS calls)."""
    for key, value in _AWS_ENV.items():
        monkeypatch.setenv(key, value)
    monkeypatch.delenv("AWS_PROFILE", raising=False)
    yield


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()
