"""Shared fixtures: a scripted fake Gemini client and instant sleeps."""
import os
import sys

import pytest

# Make the package importable without installing it
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from hospital_recommender.errors import RemoteServiceError
from hospital_recommender.file_classifier import classify
from hospital_recommender.models import UploadedFile


class FakeGeminiClient:
    """Plays back a script of responses: strings are returned, exceptions raised."""

    def __init__(self, script):
        self.script = list(script)
        self.calls = []

    async def generate(self, prompt, attachments=(), tier="fast"):
        self.calls.append({"prompt": prompt, "attachments": list(attachments), "tier": tier})
        step = self.script[min(len(self.calls), len(self.script)) - 1]
        if isinstance(step, BaseException):
            raise step
        return step


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


def rate_limited(retry_delay=None, quota_ids=()):
    return RemoteServiceError(429, "Resource has been exhausted", retry_delay, tuple(quota_ids))


def unavailable():
    return RemoteServiceError(503, "The model is overloaded. Please try again later.")


def make_upload(tmp_path, name, content: bytes) -> UploadedFile:
    path = tmp_path / name
    path.write_bytes(content)
    kind, mime_type = classify(name)
    return UploadedFile(
        original_name=name,
        size_bytes=len(content),
        storage_path=str(path),
        kind=kind,
        mime_type=mime_type,
    )


@pytest.fixture
def sleep():
    return RecordingSleep()
