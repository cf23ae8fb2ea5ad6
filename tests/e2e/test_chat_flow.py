"""
End-to-End Tests for the Chat API

Drives the FastAPI app through TestClient with scripted model providers:
- First message returns the evaluation, later messages return replies
- Context get/set per session
- TTS and usage endpoints
"""

import pytest
import random
import sys
import os
import tempfile

# Add project root and backend to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "linguamate", "src"))
sys.path.insert(0, os.path.join(project_root, "backend"))

os.environ.setdefault("TTS_CACHE_DIR", tempfile.mkdtemp(prefix="linguamate-audio-"))

from fastapi.testclient import TestClient

import main
from linguamate import speech
from linguamate.context_store import ContextStore
from linguamate.evaluator import ProficiencyEvaluator
from linguamate.response_shaper import ResponseShaper
from linguamate.session_router import SessionRouter
from linguamate.speech import SpeechService
from linguamate.usage_tracker import UsageTracker

EVALUATION = '{"vocabScore":2,"grammarScore":2,"errors":[{"error":"particle"}],"suggestions":[]}'
REPLY = (
    '```json\n{"response": "こんにちは！今日は何をしますか？", "translation": "Hello! What will you do today?", '
    '"teachingPoints": {"explanation": "今日 means today", "examples": ["今日は晴れ"], "practice": "Use 今日"}}\n```'
)


class FakeCommunicate:
    def __init__(self, text, voice, **kwargs):
        self.text = text

    async def save(self, path):
        with open(path, "wb") as f:
            f.write(b"ID3" + self.text.encode("utf-8"))


class TestChatFlow:
    """Complete chat flows through the HTTP boundary."""

    @pytest.fixture
    def providers(self, scripted_provider):
        return scripted_provider([EVALUATION]), scripted_provider([REPLY])

    @pytest.fixture
    def client(self, providers, tmp_path, monkeypatch):
        evaluator_provider, shaper_provider = providers
        router = SessionRouter(
            store=ContextStore(),
            evaluator=ProficiencyEvaluator(evaluator_provider),
            shaper=ResponseShaper(shaper_provider, rng=random.Random(0)),
        )
        monkeypatch.setattr(speech.edge_tts, "Communicate", FakeCommunicate)
        speech_service = SpeechService(cache_dir=tmp_path)
        tracker = UsageTracker()

        main.app.dependency_overrides[main.get_router] = lambda: router
        main.app.dependency_overrides[main.get_speech_service] = lambda: speech_service
        main.app.dependency_overrides[main.get_usage_tracker] = lambda: tracker
        yield TestClient(main.app)
        main.app.dependency_overrides.clear()

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_missing_message_is_rejected(self, client):
        assert client.post("/api/chat", json={}).status_code == 400
        assert client.post("/api/chat", json={"message": "   "}).status_code == 400

    def test_first_message_then_conversation(self, client):
        first = client.post("/api/chat", json={"message": "わたしは がくせい です", "sessionId": "learner-1"})

        assert first.status_code == 200
        body = first.json()
        assert body["message"] == ""
        assert body["sessionId"] == "learner-1"
        assert body["metadata"]["evaluationResult"]["level"] == "beginner"
        assert body["metadata"]["evaluationResult"]["errors"] == ["particle"]

        second = client.post("/api/chat", json={"message": "きょうは あついです", "sessionId": "learner-1"})

        assert second.status_code == 200
        body = second.json()
        assert body["message"] == "こんにちは！今日は何をしますか？"
        assert body["metadata"]["translation"] == "Hello! What will you do today?"
        assert body["metadata"]["teachingPoints"]["examples"] == ["今日は晴れ"]
        assert body["metadata"]["difficulty"] == "beginner"

        context = client.get("/api/context", params={"sessionId": "learner-1"}).json()["context"]
        assert context["isLevelEvaluated"] is True
        assert context["conversationHistory"][-1]["role"] == "ai"

    def test_english_message_gets_tutorial(self, client, providers):
        client.post("/api/chat", json={"message": "はじめまして", "sessionId": "learner-2"})

        response = client.post("/api/chat", json={"message": "How do I say thank you?", "sessionId": "learner-2"})

        assert response.json()["metadata"]["mode"] == "tutorial"
        assert "tutorial-style response" in providers[1].prompts[-1]

    def test_sessions_do_not_collide(self, client):
        client.post("/api/chat", json={"message": "こんにちは", "sessionId": "a", "context": {"targetLanguage": "Japanese"}})
        client.post("/api/chat", json={"message": "Bonjour", "sessionId": "b", "context": {"targetLanguage": "French"}})

        assert client.get("/api/context", params={"sessionId": "a"}).json()["context"]["targetLanguage"] == "Japanese"
        assert client.get("/api/context", params={"sessionId": "b"}).json()["context"]["targetLanguage"] == "French"

    def test_context_endpoints(self, client):
        assert client.get("/api/context", params={"sessionId": "fresh"}).status_code == 404

        response = client.post(
            "/api/context",
            params={"sessionId": "fresh"},
            json={"targetLanguage": "Korean", "currentLevel": "advanced", "isLevelEvaluated": True},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Context updated successfully"
        assert body["context"]["targetLanguage"] == "Korean"
        assert body["context"]["isLevelEvaluated"] is False

        fetched = client.get("/api/context", params={"sessionId": "fresh"}).json()["context"]
        assert fetched["currentLevel"] == "advanced"

    def test_empty_context_rejected(self, client):
        assert client.post("/api/context", json={}).status_code == 400

    def test_delete_context(self, client):
        client.post("/api/chat", json={"message": "こんにちは", "sessionId": "leaving"})

        assert client.delete("/api/context", params={"sessionId": "leaving"}).status_code == 200
        assert client.get("/api/context", params={"sessionId": "leaving"}).status_code == 404
        assert client.delete("/api/context", params={"sessionId": "leaving"}).status_code == 404

    def test_provider_failure_becomes_500(self, client, monkeypatch):
        client.post("/api/chat", json={"message": "こんにちは", "sessionId": "boom"})

        async def explode(message, context):
            raise RuntimeError("shaper exploded")

        router = main.app.dependency_overrides[main.get_router]()
        monkeypatch.setattr(router.shaper, "generate", explode)

        response = client.post("/api/chat", json={"message": "もう一度", "sessionId": "boom"})

        assert response.status_code == 500
        assert response.json()["detail"] == "Error: shaper exploded"

    def test_tts_synthesize(self, client):
        response = client.post("/api/tts/synthesize", json={"text": "こんにちは", "language": "Japanese"})

        assert response.status_code == 200
        assert response.headers["content-type"] == "audio/mpeg"
        assert response.content.startswith(b"ID3")

    def test_tts_validation(self, client):
        assert client.post("/api/tts/synthesize", json={"text": "hi"}).status_code == 400
        unsupported = client.post("/api/tts/synthesize", json={"text": "hi", "language": "Russian"})
        assert unsupported.status_code == 400
        assert unsupported.json()["detail"]["code"] == "UNSUPPORTED_LANGUAGE"

    def test_tts_cleanup(self, client):
        client.post("/api/tts/synthesize", json={"text": "hello", "language": "English"})

        response = client.post("/api/tts/cleanup", json={"forceAll": True})

        assert response.status_code == 200
        assert response.json()["removed"] == 1

    def test_usage_summary(self, client):
        response = client.get("/api/usage")

        assert response.status_code == 200
        assert set(response.json()) == {"totalRequests", "requestsPerMinute", "totalTokens", "dailyTokens"}
