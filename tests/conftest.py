import pytest

from cogbatch.config import ServiceSettings
from tests.mocks.services import RecordingSleep


@pytest.fixture(autouse=True)
def test_set_env(monkeypatch):
    monkeypatch.setenv("COGBATCH_SUBSCRIPTION_KEY", "test-key")


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def settings() -> ServiceSettings:
    """
    Settings pointing at the fake service with short, distinct delays.
    """
    return ServiceSettings(
        base_url="https://test.api.example.com",
        max_polling_tries=5,
        polling_delay=0.25,
        backoff_schedule=(0.1, 0.2, 0.4),
        batch_size=3,
        concurrency=2,
    )
