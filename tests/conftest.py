"""Shared pytest setup: keep the suite offline and on an in-memory database."""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["MOUNT_GRADIO_UI"] = "0"
os.environ.pop("GEMINI_API_KEY", None)
os.environ.pop("API_KEY", None)

import pytest  # noqa: E402

from tests.fakes import FakeStages, RecordingSleep  # noqa: E402


@pytest.fixture
def stages() -> FakeStages:
    return FakeStages()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()
