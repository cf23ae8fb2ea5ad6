"""
Shared fixtures: scripted model providers (no network access in tests).
"""

import asyncio
import os
import sys
from typing import List, Optional

import pytest

project_root = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
sys.path.insert(0, os.path.join(project_root, "linguamate", "src"))

from linguamate.providers import GenerationResult


class ScriptedProvider:
    """Returns queued replies in order (the last one repeats) and records prompts."""

    name = "Scripted"

    def __init__(self, replies: List[str], gate: Optional[asyncio.Event] = None):
        self.replies = list(replies)
        self.prompts: List[str] = []
        self.gate = gate

    async def generate(self, prompt: str) -> GenerationResult:
        self.prompts.append(prompt)
        if self.gate is not None:
            await self.gate.wait()
        text = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        return GenerationResult(text=text, model="scripted")


@pytest.fixture
def scripted_provider():
    """Factory: scripted_provider(["reply 1", "reply 2"], gate=None)."""
    def _make(replies, gate=None):
        return ScriptedProvider(replies, gate=gate)
    return _make
