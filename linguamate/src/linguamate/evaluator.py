"""
Proficiency Evaluator

Scores a learner's recent messages for vocabulary and grammar and maps the
result to a proficiency level.

Per session:
- The first message is evaluated inline (the turn waits for the level).
- Later messages feed a bounded buffer; once enough have accumulated and the
  re-evaluation interval has elapsed, a background task re-scores them without
  blocking the reply.
- Replacing or deleting the session's context cancels any in-flight task and
  bumps a generation number so late results are discarded instead of written
  into a superseded context.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, List, Optional

from linguamate.language_context import AgentResponse, LanguageContext
from linguamate.proficiency import EvaluationError, EvaluationResult, parse_evaluation

logger = logging.getLogger(__name__)

EVALUATION_INTERVAL = timedelta(minutes=5)
MIN_MESSAGES_FOR_EVALUATION = 5
MAX_MESSAGES_FOR_EVALUATION = 10

INITIAL_EVALUATION_FAILED = "Failed to evaluate initial language proficiency"

EVALUATOR_PERSONA = """You are a native speaker of multiple languages who loves making friends from around the world. You're chatting casually with a friend who's learning your language. While keeping the conversation natural and friendly, secretly analyze their language ability.

Behind the scenes, evaluate these aspects (but never mention them directly):
1. Vocabulary Usage: word variety and sophistication, appropriate word choice, idioms, word frequency level
2. Grammar Accuracy: sentence structure, verb conjugation and tense, agreement, complex structures
3. Common Errors: spelling, word order, missing particles or articles, incorrect verb forms
4. Overall Fluency: coherence, natural expression, cultural appropriateness

Analyze the messages together to see patterns: consistency, range of vocabulary, variety of grammar structures.

Respond ONLY in JSON format:
{
  "vocabScore": number (1-5),
  "grammarScore": number (1-5),
  "errors": [{"type": "spelling|grammar|vocabulary|structure", "error": "description", "correction": "suggested correction"}],
  "suggestions": [{"aspect": "vocabulary|grammar|expression", "suggestion": "specific suggestion", "example": "better usage"}]
}"""


@dataclass
class EvaluationState:
    """Evaluator bookkeeping for one session."""
    recent_messages: Deque[str] = field(default_factory=lambda: deque(maxlen=MAX_MESSAGES_FOR_EVALUATION))
    last_evaluation_time: Optional[datetime] = None
    in_progress: bool = False
    generation: int = 0
    task: Optional[asyncio.Task] = None


class ProficiencyEvaluator:
    """
    Evaluates proficiency for many sessions through one model provider.

    Args:
        provider: object with `async generate(prompt) -> GenerationResult`
        clock: callable returning the current datetime (injectable for tests)
    """

    def __init__(self, provider, clock: Callable[[], datetime] = datetime.now):
        self.provider = provider
        self.clock = clock
        self._sessions: Dict[str, EvaluationState] = {}

    def _state(self, session_id: str) -> EvaluationState:
        if session_id not in self._sessions:
            self._sessions[session_id] = EvaluationState()
        return self._sessions[session_id]

    def state(self, session_id: str) -> EvaluationState:
        return self._state(session_id)

    def record_message(self, session_id: str, text: str):
        self._state(session_id).recent_messages.append(text)

    def build_evaluation_prompt(self, messages: List[str], context: LanguageContext) -> str:
        messages_text = "\n\n".join(
            f"Message {i}: {text}" for i, text in enumerate(messages, start=1)
        )
        return f"""{EVALUATOR_PERSONA}

Target Language: {context.target_language}
Native Language: {context.native_language}

Recent Messages:
{messages_text}

Previous Topics: {', '.join(context.recent_topics)}
Recent Vocabulary: {', '.join(context.vocabulary)}
Recent Grammar Points: {', '.join(context.grammar_points)}

Please analyze these messages collectively to evaluate the user's language ability."""

    async def _score(self, messages: List[str], context: LanguageContext) -> EvaluationResult:
        prompt = self.build_evaluation_prompt(messages, context)
        result = await self.provider.generate(prompt)
        return parse_evaluation(result.text)

    async def evaluate_initial(self, session_id: str, context: LanguageContext) -> AgentResponse:
        """
        Evaluate the first message(s) of a session inline.

        Returns:
            AgentResponse with empty text; metadata holds evaluationResult and
            constraints, or {"error": ...} when the payload could not be scored
            (context left unchanged in that case)
        """
        state = self._state(session_id)
        messages = list(state.recent_messages)
        generation = state.generation

        try:
            evaluation = await self._score(messages, context)
        except EvaluationError as e:
            logger.warning(f"⚠️ [Evaluator] Initial evaluation failed for {session_id[:20]}: {e}")
            return AgentResponse(text="", metadata={"error": INITIAL_EVALUATION_FAILED})

        if generation != state.generation:
            logger.info(f"ℹ️ [Evaluator] Discarding initial evaluation for superseded session {session_id[:20]}")
            return AgentResponse(text="", metadata={"error": INITIAL_EVALUATION_FAILED})

        context.current_level = evaluation.level.level
        context.is_level_evaluated = True
        logger.info(
            f"✅ [Evaluator] Initial level for {session_id[:20]}: {evaluation.level.level} "
            f"(score {evaluation.overall_score})"
        )
        return AgentResponse(text="", metadata=evaluation.to_metadata())

    def should_evaluate(self, session_id: str) -> bool:
        state = self._state(session_id)
        has_enough_messages = len(state.recent_messages) >= MIN_MESSAGES_FOR_EVALUATION
        time_to_evaluate = (
            state.last_evaluation_time is None
            or self.clock() - state.last_evaluation_time >= EVALUATION_INTERVAL
        )
        return has_enough_messages and time_to_evaluate and not state.in_progress

    def maybe_evaluate_background(self, session_id: str, context: LanguageContext) -> Optional[asyncio.Task]:
        """
        Schedule a background re-evaluation if the session is eligible.

        The in-flight guard is set before the task is created, so a second call
        in the same turn (or the next turn) sees it immediately.

        Returns:
            The scheduled task, or None when not eligible
        """
        if not self.should_evaluate(session_id):
            return None

        state = self._state(session_id)
        state.in_progress = True
        messages = list(state.recent_messages)
        state.task = asyncio.create_task(
            self._evaluate_in_background(session_id, state, state.generation, messages, context)
        )
        logger.info(f"🔄 [Evaluator] Background evaluation scheduled for {session_id[:20]}")
        return state.task

    async def _evaluate_in_background(
        self,
        session_id: str,
        state: EvaluationState,
        generation: int,
        messages: List[str],
        context: LanguageContext
    ):
        try:
            evaluation = await self._score(messages, context)
            if generation != state.generation:
                logger.info(f"ℹ️ [Evaluator] Discarding stale evaluation for {session_id[:20]}")
                return
            previous = context.current_level
            context.current_level = evaluation.level.level
            context.is_level_evaluated = True
            state.last_evaluation_time = self.clock()
            logger.info(
                f"✅ [Evaluator] Background level for {session_id[:20]}: {previous} -> "
                f"{evaluation.level.level} (score {evaluation.overall_score})"
            )
        except asyncio.CancelledError:
            logger.info(f"ℹ️ [Evaluator] Background evaluation cancelled for {session_id[:20]}")
            raise
        except Exception as e:
            logger.error(f"❌ [Evaluator] Error in background evaluation: {e}")
        finally:
            if generation == state.generation:
                state.in_progress = False
                state.task = None

    def reset_session(self, session_id: str):
        """Cancel in-flight work and forget the buffered messages."""
        state = self._state(session_id)
        if state.task is not None and not state.task.done():
            state.task.cancel()
        state.generation += 1
        state.recent_messages.clear()
        state.last_evaluation_time = None
        state.in_progress = False
        state.task = None

    def drop_session(self, session_id: str) -> bool:
        """Reset the session and release its state entirely."""
        if session_id not in self._sessions:
            return False
        self.reset_session(session_id)
        del self._sessions[session_id]
        return True

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions
