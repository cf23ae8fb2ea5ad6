"""
Response Shaper

Builds the generation prompt for one turn and turns the model's structured
reply into display text plus metadata.

Prompt paths (checked in order):
1. tutorial     - the learner wrote in their native language; teach the
                  target-language equivalent
2. welcome      - level not evaluated yet; simple self-introduction
3. conversation - level-specific persona/complexity, optional scene, recent
                  history for continuity
"""

import logging
import random
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from linguamate.language_context import AgentResponse, LanguageContext
from linguamate.structured_reply import StructuredReply, parse_ai_response

logger = logging.getLogger(__name__)

DEFAULT_LEVEL = "beginner"
HISTORY_WINDOW = 4

PERSONAS = {
    "beginner": "friendly elementary student",
    "intermediate": "casual high school student",
    "advanced": "professional young adult",
}

COMPLEXITY = {
    "beginner": "short and simple",
    "intermediate": "moderately complex",
    "advanced": "sophisticated but natural",
}

# Characters that only appear when the learner writes in the target language.
TARGET_SCRIPTS: Dict[str, re.Pattern] = {
    "japanese": re.compile(r"[\u3040-\u309F\u30A0-\u30FF\u4E00-\u9FAF]"),
    "chinese": re.compile(r"[\u4E00-\u9FFF\u3400-\u4DBF]"),
    "korean": re.compile(r"[\uAC00-\uD7AF\u1100-\u11FF\u3130-\u318F]"),
    "russian": re.compile(r"[\u0400-\u04FF]"),
    "greek": re.compile(r"[\u0370-\u03FF]"),
    "arabic": re.compile(r"[\u0600-\u06FF]"),
    "hebrew": re.compile(r"[\u0590-\u05FF]"),
    "hindi": re.compile(r"[\u0900-\u097F]"),
    "thai": re.compile(r"[\u0E00-\u0E7F]"),
}

GRAMMAR_REQUEST_PATTERN = re.compile(r"grammar (?:of|for|about) (.+?)(?:\?|$)", re.IGNORECASE)
GRAMMAR_POINT_PATTERN = re.compile(r"grammar point: (.+?)(?:\.|\n|$)", re.IGNORECASE)
VOCABULARY_PATTERN = re.compile(r"\*\*([^*\n]+)\*\*|vocabulary: ([^.\n]+)", re.IGNORECASE)
MAX_VOCABULARY_ITEM_LENGTH = 30

SYSTEM_PROMPT = """You are "LinguaMate", a language learning companion. Respond to the user's message in their target language, following these guidelines:
1. Match the persona and context provided
2. Use vocabulary within the specified limit
3. Follow the grammar complexity rules
4. Be encouraging and engaging
5. Be natural and conversational
6. Behave like you are the user's close friend
7. Provide corrections only when specifically requested

IMPORTANT: Always format your response in JSON with this structure:
{
  "response": "Your response in the target language",
  "translation": "Translation of your response in the user's native language",
  "teachingPoints": {
    "explanation": "Brief explanation of grammar or vocabulary (when in tutorial mode)",
    "examples": ["Additional example 1", "Additional example 2"],
    "practice": "A simple practice question for the user"
  }
}"""

JAPANESE_EXAMPLES = """### Examples of How to Respond:
Example 1:
User: 天気は何ですか？
Tutor: {"response": "今日の天気はつめたいですね。暖かくしてくださいね！", "translation": "It's cold today. Stay warm!", "teachingPoints": {"explanation": "'つめたい' means 'cold', often used for weather or objects.", "examples": ["つめたい水 (tsumetai mizu) means 'cold water'.", "つめたい風 (tsumetai kaze) means 'cold wind'."], "practice": "Try saying 'つめたい' for 'cold'!"}}

Example 2:
User: はい
Tutor: {"response": "よかった！じゃあ、次は何について話そうか？", "translation": "Great! So, what should we talk about next?", "teachingPoints": {"explanation": "'よかった' (yokatta) means 'that's good'. 'じゃあ' (jaa) is a casual way to say 'so' or 'then'.", "examples": ["じゃあ、行こう！ means 'So, let's go!'", "じゃあ、またね！ means 'So, see you later!'"], "practice": "Try using 'じゃあ' to start your next sentence!"}}

"""


@dataclass(frozen=True)
class Scene:
    trigger: str
    context: str
    persona: str

    def matches(self, message: str) -> bool:
        return re.search(self.trigger, message, re.IGNORECASE) is not None


SCENES: Dict[str, List[Scene]] = {
    "beginner": [
        Scene("hello|hi|hey", "at the park with a dog", PERSONAS["beginner"]),
        Scene("what.*doing|sup|what.*up", "eating pizza with friends", PERSONAS["beginner"]),
        Scene("how.*you", "doing homework", PERSONAS["beginner"]),
    ],
    "intermediate": [
        Scene("hello|hi|hey", "shopping for new shoes", PERSONAS["intermediate"]),
        Scene("what.*doing|sup|what.*up", "watching a soccer game", PERSONAS["intermediate"]),
        Scene("how.*you", "studying for a test", PERSONAS["intermediate"]),
    ],
    "advanced": [
        Scene("hello|hi|hey", "preparing for a big meeting", PERSONAS["advanced"]),
        Scene("what.*doing|sup|what.*up", "traveling to a new city", PERSONAS["advanced"]),
        Scene("how.*you", "working on a project", PERSONAS["advanced"]),
    ],
}


def persona_for_level(level: str) -> str:
    return PERSONAS.get(level, PERSONAS[DEFAULT_LEVEL])


def complexity_for_level(level: str) -> str:
    return COMPLEXITY.get(level, COMPLEXITY[DEFAULT_LEVEL])


class ResponseShaper:
    """
    Turns (message, context) into a model reply.

    Args:
        provider: object with `async generate(prompt) -> GenerationResult`
        rng: random source for scene selection (random.Random); injectable so
             tests can make the choice deterministic
    """

    def __init__(self, provider, rng: Optional[random.Random] = None):
        self.provider = provider
        self.rng = rng or random.Random()

    def select_scene(self, level: str, message: str) -> Optional[Scene]:
        """Pick uniformly among the level's scenes whose trigger matches the message."""
        scenes = SCENES.get(level, SCENES[DEFAULT_LEVEL])
        matching = [scene for scene in scenes if scene.matches(message)]
        if not matching:
            return None
        return self.rng.choice(matching)

    def is_native_language(self, message: str, context: LanguageContext) -> bool:
        """
        True when the message contains none of the target language's script.

        Only meaningful for targets with a dedicated script; for Latin-script
        targets (Spanish, French, ...) this returns False.
        """
        pattern = TARGET_SCRIPTS.get(context.target_language.strip().lower())
        if pattern is None:
            return False
        return pattern.search(message) is None

    def build_base_prompt(self, message: str, context: LanguageContext) -> str:
        return f"""{SYSTEM_PROMPT}

Target Language: {context.target_language}
Native Language: {context.native_language}
Current Level: {context.current_level}
Learning Goals: {', '.join(context.learning_goals)}
Recent Topics: {', '.join(context.recent_topics[-3:])}
Recent Grammar Points: {', '.join(context.grammar_points[-3:])}
Recent Vocabulary: {', '.join(context.vocabulary[-10:])}

User Message: {message}
"""

    def build_tutorial_prompt(self, message: str, context: LanguageContext) -> str:
        return f"""{self.build_base_prompt(message, context)}
The user is writing in their native language ({context.native_language}).
Provide a tutorial-style response that:
1. Acknowledges their message
2. Teaches them how to express the same thing in {context.target_language}
3. Provides a simple explanation of the grammar or vocabulary used
4. Includes 2-3 similar examples
5. Ends with a simple practice question

Remember to format your response in JSON with the message, translation, and teaching points.
Keep the language very simple and encouraging."""

    def build_welcome_prompt(self, message: str, context: LanguageContext) -> str:
        return f"""{self.build_base_prompt(message, context)}
Please provide a friendly welcome message in {context.target_language} that:
1. Introduces yourself as a language tutor
2. Uses very simple, beginner-friendly language
3. Asks the user a simple question to start the conversation

Remember to format your response in JSON with both the message and its {context.native_language} translation."""

    def _history_snippet(self, context: LanguageContext) -> str:
        # The latest entry is the message being answered.
        window = context.conversation_history[-(HISTORY_WINDOW + 1):-1]
        return "\n".join(
            f"{'User' if turn['role'] == 'user' else 'Tutor'}: {turn['content']}"
            for turn in window
        )

    def build_response_prompt(self, message: str, context: LanguageContext, scene: Optional[Scene] = None) -> str:
        scene_context = ""
        if scene:
            scene_context = f"\nCurrent Scene: {scene.context}\nPersona: {scene.persona}\n"

        examples = JAPANESE_EXAMPLES if context.target_language.strip().lower() == "japanese" else ""

        return f"""{self.build_base_prompt(message, context)}{scene_context}
Response Guidelines:
1. Use {context.current_level} level {context.target_language}
2. Respond as a {persona_for_level(context.current_level)}
3. Keep responses {complexity_for_level(context.current_level)}
4. Do NOT repeat the user's exact words or questions unless you need to clarify something
5. Use the conversation history to continue the topic or introduce a related one
6. If there are multiple sentences, combine them in one response

Remember to format your response in JSON with both the message and its {context.native_language} translation.

{examples}### Conversation History (most recent):
{self._history_snippet(context) or 'No prior conversation.'}

### User Message:
{message}"""

    def _extract_grammar_point(self, message: str, reply: StructuredReply) -> Optional[str]:
        match = GRAMMAR_REQUEST_PATTERN.search(message)
        if not match and reply.teaching_points:
            match = GRAMMAR_POINT_PATTERN.search(reply.teaching_points.get("explanation", ""))
        return match.group(1).strip() if match else None

    def _extract_vocabulary(self, reply: StructuredReply) -> List[str]:
        if not reply.teaching_points:
            return []
        words = []
        for match in VOCABULARY_PATTERN.finditer(reply.teaching_points.get("explanation", "")):
            text = match.group(1) or match.group(2)
            for word in text.split(","):
                word = word.strip()
                if word and len(word) <= MAX_VOCABULARY_ITEM_LENGTH and word not in words:
                    words.append(word)
        return words

    async def generate(self, message: str, context: LanguageContext) -> AgentResponse:
        """
        Generate the reply for one turn.

        Returns:
            AgentResponse whose metadata carries language, difficulty, context,
            persona, translation, teachingPoints and mode (plus grammarPoint /
            vocabulary when the teaching points name them)
        """
        scene = self.select_scene(context.current_level, message)
        if self.is_native_language(message, context):
            mode = "tutorial"
            prompt = self.build_tutorial_prompt(message, context)
        elif not context.is_level_evaluated:
            mode = "welcome"
            prompt = self.build_welcome_prompt(message, context)
        else:
            mode = "conversation"
            prompt = self.build_response_prompt(message, context, scene)

        logger.info(f"🎭 [ResponseShaper] Generating {mode} reply (level={context.current_level}, scene={scene.context if scene else None})")
        result = await self.provider.generate(prompt)
        reply = parse_ai_response(result.text)

        metadata: Dict[str, Any] = {
            "language": context.target_language,
            "difficulty": context.current_level,
            "context": scene.context if scene else "general conversation",
            "persona": scene.persona if scene else persona_for_level(context.current_level),
            "translation": reply.translation,
            "teachingPoints": reply.teaching_points,
            "mode": mode,
        }

        grammar_point = self._extract_grammar_point(message, reply)
        if grammar_point:
            metadata["grammarPoint"] = grammar_point
        vocabulary = self._extract_vocabulary(reply)
        if vocabulary:
            metadata["vocabulary"] = vocabulary

        return AgentResponse(text=reply.response, metadata=metadata)
