"""
FastAPI Backend for LinguaMate

REST endpoints for the language-learning chat:
- Chat turns routed through the proficiency & context engine
- Get/set of the per-session learning context
- Text-to-speech with an on-disk audio cache
- Model usage summary
"""

from fastapi import FastAPI, HTTPException, Depends, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel
from typing import Optional, Dict, Any
from dotenv import load_dotenv
import os
import sys
import time
import signal
from datetime import timedelta

load_dotenv()

from lib.logger import setup_logging, get_logger

setup_logging(use_colors=True)

logger = get_logger("backend.main")

# Add the linguamate package to Python path
backend_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(backend_dir)
package_src = os.path.join(project_root, 'linguamate', 'src')
if os.path.exists(package_src) and package_src not in sys.path:
    sys.path.insert(0, package_src)

from lib.supabase_client import get_supabase_client

from linguamate.context_store import ContextStore
from linguamate.evaluator import ProficiencyEvaluator
from linguamate.language_context import LanguageContext
from linguamate.providers import get_provider
from linguamate.response_shaper import ResponseShaper
from linguamate.session_router import SessionRouter
from linguamate.speech import LANGUAGE_CODES, SpeechService, TTSError
from linguamate.usage_tracker import UsageTracker

DEFAULT_SESSION_ID = "default"
SESSION_IDLE_TIMEOUT = timedelta(minutes=int(os.getenv("SESSION_IDLE_TIMEOUT_MINUTES", "1440")))

# Singletons, created on first use
_router: Optional[SessionRouter] = None
_speech_service: Optional[SpeechService] = None
_usage_tracker: Optional[UsageTracker] = None


def get_usage_tracker() -> UsageTracker:
    global _usage_tracker
    if _usage_tracker is None:
        _usage_tracker = UsageTracker(supabase_client=get_supabase_client())
    return _usage_tracker


def get_router() -> SessionRouter:
    """Get or create the singleton SessionRouter."""
    global _router
    if _router is None:
        provider = get_provider(usage_tracker=get_usage_tracker())
        _router = SessionRouter(
            store=ContextStore(supabase_client=get_supabase_client()),
            evaluator=ProficiencyEvaluator(provider),
            shaper=ResponseShaper(provider),
            level_mode=os.getenv("LEVEL_MODE", "evaluate"),
        )
        logger.success("Session router initialized", {"provider": provider.name, "level_mode": _router.level_mode})
    return _router


def get_speech_service() -> SpeechService:
    global _speech_service
    if _speech_service is None:
        _speech_service = SpeechService()
    return _speech_service


app = FastAPI(
    title="LinguaMate API",
    description="Language-learning chat with proficiency-aware replies",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[os.getenv("ALLOWED_ORIGIN", "http://localhost:3000")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

audio_cache_dir = os.getenv("TTS_CACHE_DIR", "cache/audio")
os.makedirs(audio_cache_dir, exist_ok=True)
app.mount("/cache/audio", StaticFiles(directory=audio_cache_dir), name="audio-cache")

# ==================== Pydantic Models ====================

class ChatRequest(BaseModel):
    message: Optional[str] = None
    context: Optional[Dict[str, Any]] = None
    sessionId: Optional[str] = None


class ChatResponse(BaseModel):
    message: str
    metadata: Dict[str, Any]
    sessionId: str


class SynthesizeRequest(BaseModel):
    text: Optional[str] = None
    language: Optional[str] = None
    options: Optional[Dict[str, Any]] = None


class CleanupRequest(BaseModel):
    maxAgeDays: int = 7
    forceAll: bool = False


# ==================== Endpoints ====================

@app.get("/health")
async def health():
    return {"status": "ok", "timestamp": time.time()}


@app.post("/api/chat", response_model=ChatResponse)
async def chat(request: ChatRequest, router: SessionRouter = Depends(get_router)):
    """Process one chat turn for a session."""
    started = time.time()
    session_id = request.sessionId or DEFAULT_SESSION_ID
    logger.request("POST", "/api/chat", session_id, {"message": request.message})

    if not request.message or not request.message.strip():
        raise HTTPException(status_code=400, detail="Please provide a message to chat with the AI.")

    try:
        router.prune_idle_sessions(SESSION_IDLE_TIMEOUT)
        current = router.get_context(session_id) or await router.store.load(session_id)
        if current is None:
            context = router.set_context(session_id, LanguageContext.from_dict(request.context))
            logger.subsection("Language context initialized", context.to_dict())
        elif request.context:
            context = router.set_context(session_id, current.merged_with(request.context))
            logger.subsection("Language context updated", context.to_dict())

        await router.store.store_message(session_id, "user", request.message)
        response = await router.route_message(session_id, request.message)
        await router.store.store_message(session_id, "ai", response.text, response.metadata)
        await router.store.save(session_id)
    except Exception as e:
        logger.error("Error in chat endpoint", e)
        raise HTTPException(status_code=500, detail=f"Error: {e}")

    logger.response(200, "/api/chat", time.time() - started, {
        "language": response.metadata.get("language"),
        "difficulty": response.metadata.get("difficulty"),
        "mode": response.metadata.get("mode"),
    })
    return ChatResponse(message=response.text, metadata=response.metadata, sessionId=session_id)


@app.post("/api/context")
async def set_context(
    context: Optional[Dict[str, Any]] = None,
    session_id: str = Query(DEFAULT_SESSION_ID, alias="sessionId"),
    router: SessionRouter = Depends(get_router)
):
    """Replace the learning context for a session."""
    if not context:
        raise HTTPException(status_code=400, detail="Please provide a context object.")

    stored = router.set_context(session_id, LanguageContext.from_dict(context))
    await router.store.save(session_id)
    logger.success(f"Context updated for session {session_id}")
    return {"message": "Context updated successfully", "context": stored.to_dict()}


@app.get("/api/context")
async def get_context(
    session_id: str = Query(DEFAULT_SESSION_ID, alias="sessionId"),
    router: SessionRouter = Depends(get_router)
):
    context = router.get_context(session_id) or await router.store.load(session_id)
    if context is None:
        raise HTTPException(status_code=404, detail="No context has been initialized yet.")
    return {"context": context.to_dict()}


@app.delete("/api/context")
async def delete_context(
    session_id: str = Query(DEFAULT_SESSION_ID, alias="sessionId"),
    router: SessionRouter = Depends(get_router)
):
    """Forget a session and cancel any evaluation still running for it."""
    if not router.delete_context(session_id):
        raise HTTPException(status_code=404, detail="No context has been initialized yet.")
    logger.success(f"Context deleted for session {session_id}")
    return {"message": "Context deleted successfully"}


@app.post("/api/tts/synthesize")
async def synthesize(request: SynthesizeRequest, speech: SpeechService = Depends(get_speech_service)):
    """Synthesize text and return the mp3 file."""
    if not request.text or not request.language:
        raise HTTPException(status_code=400, detail="Missing required parameters")

    language_code = LANGUAGE_CODES.get(request.language, request.language.lower())
    logger.request("POST", "/api/tts/synthesize", data={
        "language": request.language,
        "languageCode": language_code,
        "textLength": len(request.text),
    })

    try:
        audio_path = await speech.synthesize(request.text, language_code, request.options)
    except TTSError as e:
        status = 500 if e.code == TTSError.SYNTHESIS_FAILED else 400
        logger.error("TTS error", e)
        raise HTTPException(status_code=status, detail=e.to_dict())

    return FileResponse(audio_path, media_type="audio/mpeg", filename="speech.mp3")


@app.get("/api/tts/voices/{language}")
async def voices(language: str, speech: SpeechService = Depends(get_speech_service)):
    language_code = LANGUAGE_CODES.get(language, language.lower())
    found = await speech.get_voices(language_code)
    return {"voices": [voice.to_dict() for voice in found]}


@app.post("/api/tts/cleanup")
async def cleanup(request: Optional[CleanupRequest] = None, speech: SpeechService = Depends(get_speech_service)):
    request = request or CleanupRequest()
    removed = speech.cleanup(max_age_days=request.maxAgeDays, force_all=request.forceAll)
    return {"message": "Cache cleanup completed", "removed": removed}


@app.get("/api/usage")
async def usage(
    user_id: Optional[str] = Query(None, alias="userId"),
    tracker: UsageTracker = Depends(get_usage_tracker)
):
    return await tracker.get_usage_summary(user_id)


if __name__ == "__main__":
    import uvicorn

    def handle_exit(*args):
        logger.section("SERVER SHUTDOWN", {"reason": "signal received"})
        sys.exit(0)

    signal.signal(signal.SIGINT, handle_exit)
    signal.signal(signal.SIGTERM, handle_exit)

    port = int(os.getenv("PORT", "5000"))
    logger.section("SERVER STARTUP", {"port": port, "provider": os.getenv("LLM_PROVIDER", "gemini")})
    uvicorn.run(app, host="0.0.0.0", port=port)
