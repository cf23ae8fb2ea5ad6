"""
Unit Tests for the Response Shaper

Tests prompt-path selection, deterministic scene choice and reply metadata.
"""

import pytest
import random
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "linguamate", "src"))

from linguamate.language_context import LanguageContext
from linguamate.response_shaper import SCENES, ResponseShaper

REPLY = (
    '{"response": "こんにちは！元気？", "translation": "Hello! How are you?", '
    '"teachingPoints": {"explanation": "Grammar point: question particle. New vocabulary: 元気, 今日", '
    '"examples": ["元気です"], "practice": "Say hello!"}}'
)


class FixedRandom(random.Random):
    """Always picks the element at `index`."""

    def __init__(self, index: int):
        super().__init__(0)
        self.index = index

    def choice(self, seq):
        return seq[self.index]


class TestNativeLanguageDetection:

    @pytest.fixture
    def shaper(self, scripted_provider):
        return ResponseShaper(scripted_provider([REPLY]))

    def test_english_with_japanese_target_is_native(self, shaper):
        assert shaper.is_native_language("How do I say good morning?", LanguageContext(target_language="Japanese"))

    def test_japanese_text_is_not_native(self, shaper):
        assert not shaper.is_native_language("おはようございます", LanguageContext(target_language="Japanese"))

    def test_other_scripts(self, shaper):
        assert not shaper.is_native_language("Привет", LanguageContext(target_language="Russian"))
        assert shaper.is_native_language("hello", LanguageContext(target_language="Korean"))
        assert not shaper.is_native_language("안녕", LanguageContext(target_language="Korean"))

    def test_latin_script_target_cannot_tell(self, shaper):
        assert not shaper.is_native_language("hello there", LanguageContext(target_language="Spanish"))


class TestSceneSelection:

    def test_no_match_returns_none(self, scripted_provider):
        shaper = ResponseShaper(scripted_provider([REPLY]))
        assert shaper.select_scene("beginner", "天気") is None

    def test_single_match(self, scripted_provider):
        shaper = ResponseShaper(scripted_provider([REPLY]))
        scene = shaper.select_scene("intermediate", "How are you today?")
        assert scene.context == "studying for a test"

    def test_injected_random_source_picks_among_matches(self, scripted_provider):
        # "hey, what are you up to" matches both the greeting and the what-up triggers
        message = "hey, what are you up to"
        first = ResponseShaper(scripted_provider([REPLY]), rng=FixedRandom(0)).select_scene("beginner", message)
        second = ResponseShaper(scripted_provider([REPLY]), rng=FixedRandom(1)).select_scene("beginner", message)

        assert first.context == "at the park with a dog"
        assert second.context == "eating pizza with friends"

    def test_seeded_random_is_reproducible(self, scripted_provider):
        message = "hey, what are you up to"
        picks = {
            ResponseShaper(scripted_provider([REPLY]), rng=random.Random(42)).select_scene("advanced", message).context
            for _ in range(5)
        }
        assert len(picks) == 1

    def test_unknown_level_uses_beginner_scenes(self, scripted_provider):
        shaper = ResponseShaper(scripted_provider([REPLY]))
        scene = shaper.select_scene("expert", "how are you")
        assert scene in SCENES["beginner"]


class TestGenerate:

    @pytest.mark.asyncio
    async def test_native_language_message_uses_tutorial_path(self, scripted_provider):
        provider = scripted_provider([REPLY])
        shaper = ResponseShaper(provider, rng=FixedRandom(0))
        context = LanguageContext(target_language="Japanese", is_level_evaluated=True)

        response = await shaper.generate("hello, how are you?", context)

        assert response.metadata["mode"] == "tutorial"
        assert "tutorial-style response" in provider.prompts[0]
        assert "Current Scene" not in provider.prompts[0]
        assert response.metadata["context"] == "at the park with a dog"

    @pytest.mark.asyncio
    async def test_unevaluated_context_uses_welcome_path(self, scripted_provider):
        provider = scripted_provider([REPLY])
        shaper = ResponseShaper(provider)
        context = LanguageContext(target_language="Japanese", is_level_evaluated=False)

        response = await shaper.generate("こんにちは", context)

        assert response.metadata["mode"] == "welcome"
        assert "friendly welcome message in Japanese" in provider.prompts[0]

    @pytest.mark.asyncio
    async def test_conversation_path_with_scene(self, scripted_provider):
        provider = scripted_provider([REPLY])
        shaper = ResponseShaper(provider, rng=FixedRandom(0))
        context = LanguageContext(target_language="Spanish", current_level="advanced", is_level_evaluated=True)
        context.add_turn("user", "Hola")
        context.add_turn("ai", "¡Hola! ¿Qué tal?")
        context.add_turn("user", "hey, how are you?")

        response = await shaper.generate("hey, how are you?", context)

        prompt = provider.prompts[0]
        assert response.metadata["mode"] == "conversation"
        assert response.metadata["context"] == "preparing for a big meeting"
        assert response.metadata["persona"] == "professional young adult"
        assert "Current Scene: preparing for a big meeting" in prompt
        assert "Keep responses sophisticated but natural" in prompt
        assert "Tutor: ¡Hola! ¿Qué tal?" in prompt
        # The message being answered is not repeated in the history window
        assert "User: hey, how are you?" not in prompt
        # Japanese few-shot examples only for Japanese
        assert "天気は何ですか" not in prompt

    @pytest.mark.asyncio
    async def test_history_window_is_last_four_turns(self, scripted_provider):
        provider = scripted_provider([REPLY])
        shaper = ResponseShaper(provider)
        context = LanguageContext(target_language="French", is_level_evaluated=True)
        for i in range(6):
            context.add_turn("user", f"turn {i}")

        await shaper.generate("turn 5", context)

        prompt = provider.prompts[0]
        assert "User: turn 0" not in prompt
        assert all(f"User: turn {i}" in prompt for i in range(1, 5))

    @pytest.mark.asyncio
    async def test_reply_metadata(self, scripted_provider):
        shaper = ResponseShaper(scripted_provider([REPLY]))
        context = LanguageContext(target_language="Japanese", current_level="beginner", is_level_evaluated=True)

        response = await shaper.generate("げんき？", context)

        assert response.text == "こんにちは！元気？"
        assert response.metadata["language"] == "Japanese"
        assert response.metadata["difficulty"] == "beginner"
        assert response.metadata["translation"] == "Hello! How are you?"
        assert response.metadata["teachingPoints"]["examples"] == ["元気です"]
        assert response.metadata["grammarPoint"] == "question particle"
        assert response.metadata["vocabulary"] == ["元気", "今日"]

    @pytest.mark.asyncio
    async def test_vocabulary_only_from_bold_and_labelled_terms(self, scripted_provider):
        reply = (
            '{"response": "r", "translation": "t", "teachingPoints": {"explanation": '
            '"\\"How are you today, my friend?\\" becomes **元気** in casual speech. '
            'Vocabulary: 友達, a very long phrase that is clearly not a word"}}'
        )
        shaper = ResponseShaper(scripted_provider([reply]))
        context = LanguageContext(target_language="Japanese", is_level_evaluated=True)

        response = await shaper.generate("げんき？", context)

        assert response.metadata["vocabulary"] == ["元気", "友達"]

    @pytest.mark.asyncio
    async def test_malformed_reply_still_returns_text(self, scripted_provider):
        shaper = ResponseShaper(scripted_provider(["ただのテキスト"]))
        context = LanguageContext(target_language="Japanese", is_level_evaluated=True)

        response = await shaper.generate("こんにちは", context)

        assert response.text == "ただのテキスト"
        assert response.metadata["translation"] == "Translation not available"
        assert response.metadata["teachingPoints"] is None
