# Shared fixtures and fakes for the aiMate test suite

import asyncio
import os
from typing import List

import pytest

from aimate_chat.agent.context.assembler import AttachmentSource
from aimate_chat.agent.structs import CompletionRequest, RetryPolicy
from aimate_chat.config.settings import Settings
from aimate_chat.providers.base import BaseProvider

# Retries without waiting
FAST_RETRY = RetryPolicy(max_retries=3, base_delay_ms=0, max_delay_ms=0, jitter_ms=0)

# Script item that blocks until the stream is cancelled
HANG = object()


class ScriptedProvider(BaseProvider):
    """
    Plays back one script per request. A script is a list whose items are
    content deltas (str), exceptions to raise, or HANG.
    """

    def __init__(self, *scripts):
        self.scripts = list(scripts)
        self.requests: List[CompletionRequest] = []
        self.active = 0
        self.max_active = 0
        self.closed = False

    async def stream_chat(self, request):
        self.requests.append(request)
        script = self.scripts.pop(0) if self.scripts else []
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            for item in script:
                # Give other tasks a chance to run between deltas
                await asyncio.sleep(0)
                if item is HANG:
                    await asyncio.Event().wait()
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            self.active -= 1

    async def list_models(self):
        return ["test-model"]

    async def validate_connection(self):
        return True

    async def close(self):
        self.closed = True


def make_settings(**overrides) -> Settings:
    """Settings isolated from the environment and any .env file."""
    overrides.setdefault("model", "test-model")
    overrides.setdefault(
        "retry",
        {"max_retries": 3, "base_delay_ms": 0, "max_delay_ms": 0, "jitter_ms": 0},
    )
    return Settings(_env_file=None, **overrides)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """No AIMATE_* variables and no .env in the working directory."""
    for key in list(os.environ):
        if key.upper().startswith("AIMATE_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


class FakeAttachmentSource(AttachmentSource):
    """
    In-memory attachment source. Ids listed in ``failing`` raise on fetch.
    """

    def __init__(self, knowledge=None, notes=None, files=None, chats=None, failing=()):
        self.knowledge = knowledge or {}
        self.notes = notes or {}
        self.files = files or {}
        self.chats = chats or {}
        self.failing = set(failing)
        self.message_loads = []

    def _check(self, item_id):
        if item_id in self.failing:
            raise ConnectionError(f"backend unavailable for {item_id}")

    async def get_knowledge_chunks(self, document_id):
        self._check(document_id)
        return self.knowledge.get(document_id, [])

    async def get_notes_by_ids(self, note_ids):
        for note_id in note_ids:
            self._check(note_id)
        return [self.notes[n] for n in note_ids if n in self.notes]

    async def get_file(self, workspace_id, file_id):
        self._check(file_id)
        return self.files[file_id]

    async def get_messages(self, conversation_id):
        self._check(conversation_id)
        self.message_loads.append(conversation_id)
        return list(self.chats.get(conversation_id, []))
