"""
Session Context Store

Holds one LanguageContext per session id. The in-memory map is authoritative
for the running process; when a Supabase client is supplied, contexts and chat
messages are also persisted so they survive restarts.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from linguamate.language_context import LanguageContext

logger = logging.getLogger(__name__)


class ContextStore:
    """
    Session-keyed store for learning contexts.
    """

    CONTEXTS_TABLE = "language_contexts"
    MESSAGES_TABLE = "chat_messages"

    def __init__(self, supabase_client=None):
        """
        Initialize ContextStore.

        Args:
            supabase_client: Supabase client instance (optional)
        """
        self.supabase = supabase_client
        self.use_supabase = supabase_client is not None
        self._contexts: Dict[str, LanguageContext] = {}

        if not self.use_supabase:
            logger.info("ℹ️ [ContextStore] Supabase not configured, contexts are kept in memory only")

    def set_context(self, session_id: str, context: LanguageContext) -> LanguageContext:
        """
        Replace the session's context. Proficiency knowledge is always reset.

        Args:
            session_id: Session identifier
            context: Context to attach (copied, never aliased)

        Returns:
            The stored context
        """
        stored = context.copy()
        stored.is_level_evaluated = False
        self._contexts[session_id] = stored
        logger.info(
            f"💾 [ContextStore] Context set for session {session_id[:20]} "
            f"({stored.target_language}/{stored.native_language})"
        )
        return stored

    def get_context(self, session_id: str) -> Optional[LanguageContext]:
        return self._contexts.get(session_id)

    def idle_sessions(self, cutoff: datetime) -> List[str]:
        """Session ids whose last interaction is older than cutoff."""
        return [
            session_id for session_id, context in self._contexts.items()
            if context.last_interaction_time < cutoff
        ]

    def update_context(self, session_id: str, metadata: Dict[str, Any]) -> None:
        """
        Fold turn metadata into the session's context.

        Appends the metadata topic (unless it is already the most recent one),
        grammar point and vocabulary, applies retention bounds and refreshes
        last_interaction_time.
        """
        context = self._contexts.get(session_id)
        if context is None:
            return

        context.last_interaction_time = datetime.now()

        topic = metadata.get("context")
        if topic and (not context.recent_topics or context.recent_topics[-1] != topic):
            context.recent_topics.append(topic)

        grammar_point = metadata.get("grammarPoint")
        if grammar_point and grammar_point not in context.grammar_points:
            context.grammar_points.append(grammar_point)

        for word in metadata.get("vocabulary") or []:
            if word not in context.vocabulary:
                context.vocabulary.append(word)

        context.trim()

    def delete_context(self, session_id: str) -> bool:
        return self._contexts.pop(session_id, None) is not None

    async def save(self, session_id: str) -> bool:
        """
        Persist the session's context to the database.

        Returns:
            True if saved, False if not persisted
        """
        context = self._contexts.get(session_id)
        if context is None or not self.use_supabase:
            return False

        try:
            self.supabase.table(self.CONTEXTS_TABLE).upsert({
                "session_id": session_id,
                "context": context.to_dict(),
                "last_updated": datetime.now().isoformat(),
            }, on_conflict="session_id").execute()
            return True
        except Exception as e:
            logger.warning(f"⚠️ [ContextStore] Error saving context to database: {e}")
            return False

    async def load(self, session_id: str) -> Optional[LanguageContext]:
        """
        Load a persisted context into memory (memory wins when already present).

        Args:
            session_id: Session identifier

        Returns:
            LanguageContext or None if not found
        """
        if session_id in self._contexts or not self.use_supabase:
            return self._contexts.get(session_id)

        try:
            result = self.supabase.table(self.CONTEXTS_TABLE) \
                .select("context") \
                .eq("session_id", session_id) \
                .limit(1) \
                .execute()

            if result.data:
                # Restored as persisted, including the evaluated level.
                context = LanguageContext.from_dict(result.data[0].get("context"))
                self._contexts[session_id] = context
                logger.info(f"✅ [ContextStore] Loaded context for session {session_id[:20]} from database")
                return context
        except Exception as e:
            logger.warning(f"⚠️ [ContextStore] Error loading context from database: {e}")

        return None

    async def store_message(
        self,
        session_id: str,
        role: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        """Store a chat message row. Returns the inserted row or None."""
        if not self.use_supabase:
            return None

        try:
            result = self.supabase.table(self.MESSAGES_TABLE).insert({
                "session_id": session_id,
                "role": role,
                "content": content,
                "metadata": metadata or {},
            }).execute()
            return result.data[0] if result.data else None
        except Exception as e:
            logger.warning(f"⚠️ [ContextStore] Error storing {role} message: {e}")
            return None
