"""
Session Router

Orchestrates one learner turn:
record message -> (first turn) inline evaluation, or background check ->
generate reply -> record reply -> fold metadata into the context.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from linguamate.context_store import ContextStore
from linguamate.evaluator import ProficiencyEvaluator
from linguamate.language_context import AgentResponse, LanguageContext
from linguamate.response_shaper import ResponseShaper

logger = logging.getLogger(__name__)

LEVEL_MODES = ("evaluate", "fixed_beginner")


class ContextNotInitializedError(RuntimeError):
    """Raised when a message is routed for a session with no context."""

    def __init__(self, session_id: str):
        super().__init__(
            f"Context not initialized for session '{session_id}'. "
            "Call set_context() before routing messages."
        )
        self.session_id = session_id


class SessionRouter:
    """
    Per-turn orchestration over the context store, evaluator and shaper.

    level_mode:
        "evaluate"       - first message is scored inline and returns only the
                           evaluation; later turns re-score in the background
        "fixed_beginner" - pins every session to beginner and skips evaluation
    """

    def __init__(
        self,
        store: ContextStore,
        evaluator: ProficiencyEvaluator,
        shaper: ResponseShaper,
        level_mode: str = "evaluate"
    ):
        if level_mode not in LEVEL_MODES:
            raise ValueError(f"Unknown level mode: {level_mode}. Expected one of: {', '.join(LEVEL_MODES)}")
        self.store = store
        self.evaluator = evaluator
        self.shaper = shaper
        self.level_mode = level_mode

    def set_context(self, session_id: str, context: LanguageContext) -> LanguageContext:
        self.evaluator.reset_session(session_id)
        return self.store.set_context(session_id, context)

    def get_context(self, session_id: str) -> Optional[LanguageContext]:
        return self.store.get_context(session_id)

    def delete_context(self, session_id: str) -> bool:
        """Forget a session: cancel its evaluation work and drop its context."""
        self.evaluator.drop_session(session_id)
        removed = self.store.delete_context(session_id)
        if removed:
            logger.info(f"🗑️ [Router] Session {session_id[:20]} removed")
        return removed

    def prune_idle_sessions(self, max_idle: timedelta, now: Optional[datetime] = None) -> int:
        """
        Delete sessions with no interaction for longer than max_idle.

        Returns:
            Number of sessions removed
        """
        cutoff = (now or datetime.now()) - max_idle
        removed = 0
        for session_id in self.store.idle_sessions(cutoff):
            if self.delete_context(session_id):
                removed += 1
        if removed:
            logger.info(f"🧹 [Router] Pruned {removed} idle session(s)")
        return removed

    async def route_message(self, session_id: str, message: str) -> AgentResponse:
        """
        Process one user message.

        Raises:
            ContextNotInitializedError: no context for this session
        """
        context = self.store.get_context(session_id)
        if context is None:
            raise ContextNotInitializedError(session_id)

        try:
            if self.level_mode == "fixed_beginner":
                context.current_level = "beginner"
                context.is_level_evaluated = True

            context.add_turn("user", message)
            context.recent_topics.append(message)
            context.trim()
            self.evaluator.record_message(session_id, message)

            if not context.is_level_evaluated:
                logger.info(f"📊 [Router] First message for {session_id[:20]}, evaluating proficiency")
                evaluation = await self.evaluator.evaluate_initial(session_id, context)
                self.store.update_context(session_id, {})
                return evaluation

            self.evaluator.maybe_evaluate_background(session_id, context)

            response = await self.shaper.generate(message, context)
            context.add_turn("ai", response.text)
            self.store.update_context(session_id, response.metadata)

            logger.info(f"✅ [Router] Reply ready for {session_id[:20]} ({len(response.text)} chars)")
            return response
        except Exception as e:
            logger.error(f"❌ [Router] Error in message routing: {e}")
            raise
