"""
Language Context Data Model

Defines the LanguageContext dataclass holding one learner's session state.
"""

from dataclasses import dataclass, field, replace
from typing import Optional, List, Dict, Any
from datetime import datetime


LEVELS = ("beginner", "intermediate", "advanced")

MAX_HISTORY_MESSAGES = 50
MAX_RECENT_TOPICS = 5
MAX_GRAMMAR_POINTS = 20
MAX_VOCABULARY = 50


def _parse_time(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return datetime.now()
        # Stored as naive local time.
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone().replace(tzinfo=None)
        return parsed
    return datetime.now()


@dataclass
class LanguageContext:
    """Mutable learning-session state for one conversation."""
    target_language: str = "Japanese"
    native_language: str = "English"
    current_level: str = "beginner"
    is_level_evaluated: bool = False
    learning_goals: List[str] = field(default_factory=list)
    recent_topics: List[str] = field(default_factory=list)
    grammar_points: List[str] = field(default_factory=list)
    vocabulary: List[str] = field(default_factory=list)
    conversation_history: List[Dict[str, str]] = field(default_factory=list)
    session_start_time: datetime = field(default_factory=datetime.now)
    last_interaction_time: datetime = field(default_factory=datetime.now)

    def add_turn(self, role: str, content: str):
        """Append a turn and keep only the most recent MAX_HISTORY_MESSAGES."""
        self.conversation_history.append({"role": role, "content": content})
        if len(self.conversation_history) > MAX_HISTORY_MESSAGES:
            self.conversation_history = self.conversation_history[-MAX_HISTORY_MESSAGES:]

    def trim(self):
        """Apply retention bounds to the append-only sequences."""
        self.recent_topics = self.recent_topics[-MAX_RECENT_TOPICS:]
        self.grammar_points = self.grammar_points[-MAX_GRAMMAR_POINTS:]
        self.vocabulary = self.vocabulary[-MAX_VOCABULARY:]

    def copy(self) -> "LanguageContext":
        return replace(
            self,
            learning_goals=list(self.learning_goals),
            recent_topics=list(self.recent_topics),
            grammar_points=list(self.grammar_points),
            vocabulary=list(self.vocabulary),
            conversation_history=[dict(turn) for turn in self.conversation_history],
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the camelCase wire format used by the browser client."""
        return {
            "targetLanguage": self.target_language,
            "nativeLanguage": self.native_language,
            "currentLevel": self.current_level,
            "isLevelEvaluated": self.is_level_evaluated,
            "learningGoals": list(self.learning_goals),
            "recentTopics": list(self.recent_topics),
            "grammarPoints": list(self.grammar_points),
            "vocabulary": list(self.vocabulary),
            "conversationHistory": [dict(turn) for turn in self.conversation_history],
            "sessionStartTime": self.session_start_time.isoformat(),
            "lastInteractionTime": self.last_interaction_time.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "LanguageContext":
        """
        Build a context from wire-format data, filling session defaults.

        Args:
            data: camelCase dictionary (may be partial or None)

        Returns:
            LanguageContext object
        """
        data = data or {}
        level = data.get("currentLevel") or "beginner"
        if level not in LEVELS:
            level = "beginner"
        goals = data.get("learningGoals")
        if goals is None:
            goals = ["Basic conversation"]

        context = cls(
            target_language=data.get("targetLanguage") or "Japanese",
            native_language=data.get("nativeLanguage") or "English",
            current_level=level,
            is_level_evaluated=bool(data.get("isLevelEvaluated", False)),
            learning_goals=list(goals),
            recent_topics=list(data.get("recentTopics") or []),
            grammar_points=list(data.get("grammarPoints") or []),
            vocabulary=list(data.get("vocabulary") or []),
            conversation_history=[
                {"role": turn.get("role", "user"), "content": turn.get("content", "")}
                for turn in (data.get("conversationHistory") or [])
                if isinstance(turn, dict)
            ],
            session_start_time=_parse_time(data.get("sessionStartTime")),
            last_interaction_time=_parse_time(data.get("lastInteractionTime")),
        )
        context.trim()
        if len(context.conversation_history) > MAX_HISTORY_MESSAGES:
            context.conversation_history = context.conversation_history[-MAX_HISTORY_MESSAGES:]
        return context

    def merged_with(self, overrides: Optional[Dict[str, Any]]) -> "LanguageContext":
        """Return a new context with wire-format overrides applied on top of this one."""
        data = self.to_dict()
        data.update(overrides or {})
        merged = LanguageContext.from_dict(data)
        merged.last_interaction_time = datetime.now()
        return merged


@dataclass
class AgentResponse:
    """Text plus metadata returned for one turn."""
    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.text, "metadata": self.metadata}
