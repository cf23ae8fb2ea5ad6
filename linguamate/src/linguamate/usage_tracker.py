"""
Model Usage Tracker

Records token usage per request in the `model_usage` table (or in memory when
Supabase is not configured) and reports a per-minute request budget.
"""

import logging
import time
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)

REQUEST_LIMIT_PER_MINUTE = 15
WINDOW_SECONDS = 60


class UsageTracker:
    TABLE = "model_usage"

    def __init__(self, supabase_client=None, request_limit_per_minute: int = REQUEST_LIMIT_PER_MINUTE, clock=time.monotonic):
        self.supabase = supabase_client
        self.use_supabase = supabase_client is not None
        self.request_limit_per_minute = request_limit_per_minute
        self._clock = clock
        self._request_times: Deque[float] = deque()
        self._records: List[Dict[str, Any]] = []

    def _requests_in_window(self) -> int:
        cutoff = self._clock() - WINDOW_SECONDS
        while self._request_times and self._request_times[0] <= cutoff:
            self._request_times.popleft()
        return len(self._request_times)

    async def log_usage(self, user_id: str, model: str, input_tokens: int, output_tokens: int):
        """Record one model request."""
        self._request_times.append(self._clock())
        row = {
            "user_id": user_id or "anonymous",
            "model": model,
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "total_tokens": input_tokens + output_tokens,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        if not self.use_supabase:
            self._records.append(row)
            return

        try:
            self.supabase.table(self.TABLE).insert(row).execute()
        except Exception as e:
            logger.warning(f"⚠️ [UsageTracker] Error logging usage to database: {e}")

    def _fetch_rows(self, user_id: Optional[str]) -> List[Dict[str, Any]]:
        if not self.use_supabase:
            return [r for r in self._records if not user_id or r["user_id"] == user_id]

        query = self.supabase.table(self.TABLE).select("total_tokens, timestamp")
        if user_id:
            query = query.eq("user_id", user_id)
        return query.execute().data or []

    async def get_usage_summary(self, user_id: Optional[str] = None) -> Dict[str, int]:
        """
        Summarize usage.

        Returns:
            Dict with totalRequests, requestsPerMinute (remaining in the current
            window), totalTokens and dailyTokens (UTC day)
        """
        remaining = max(self.request_limit_per_minute - self._requests_in_window(), 0)

        try:
            rows = self._fetch_rows(user_id)
        except Exception as e:
            logger.warning(f"⚠️ [UsageTracker] Error fetching usage summary: {e}")
            return {"totalRequests": 0, "requestsPerMinute": remaining, "totalTokens": 0, "dailyTokens": 0}

        today = datetime.now(timezone.utc).date().isoformat()
        return {
            "totalRequests": len(rows),
            "requestsPerMinute": remaining,
            "totalTokens": sum(r.get("total_tokens") or 0 for r in rows),
            "dailyTokens": sum(
                r.get("total_tokens") or 0 for r in rows
                if str(r.get("timestamp") or "").startswith(today)
            ),
        }
