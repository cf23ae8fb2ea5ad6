"""
Speech Synthesis

Text-to-speech for tutor replies through edge-tts. Audio files are cached on
disk under a content hash of (text, language, options) so repeated playback
does not re-synthesize.
"""

import os
import time
import json
import hashlib
import logging
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import edge_tts

logger = logging.getLogger(__name__)

SUPPORTED_LANGUAGES = ("en", "es", "fr", "de", "it", "ja", "ko", "zh")

LANGUAGE_CODES = {
    "English": "en",
    "Spanish": "es",
    "French": "fr",
    "German": "de",
    "Italian": "it",
    "Japanese": "ja",
    "Korean": "ko",
    "Chinese": "zh",
}

DEFAULT_VOICES = {
    "en": "en-US-JennyNeural",
    "es": "es-ES-ElviraNeural",
    "fr": "fr-FR-DeniseNeural",
    "de": "de-DE-KatjaNeural",
    "it": "it-IT-ElsaNeural",
    "ja": "ja-JP-NanamiNeural",
    "ko": "ko-KR-SunHiNeural",
    "zh": "zh-CN-XiaoxiaoNeural",
}

ALLOWED_OPTIONS = {"voice", "rate", "pitch", "volume", "format"}
SECONDS_PER_DAY = 24 * 60 * 60


class TTSError(Exception):
    """Speech synthesis failure with a machine-readable code."""

    UNSUPPORTED_LANGUAGE = "UNSUPPORTED_LANGUAGE"
    SYNTHESIS_FAILED = "SYNTHESIS_FAILED"
    INVALID_OPTIONS = "INVALID_OPTIONS"

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    def to_dict(self) -> Dict[str, str]:
        return {"code": self.code, "message": self.message}


@dataclass
class Voice:
    id: str
    name: str
    language: str
    gender: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


def _base_language(language: str) -> str:
    return language.lower().split("-")[0]


class SpeechService:
    """
    edge-tts synthesis with an on-disk mp3 cache.

    Options (all optional): voice (edge-tts short name), rate (speed multiplier,
    1.0 = normal), pitch (Hz offset), volume (0.0-1.0), format ("mp3").
    """

    def __init__(self, cache_dir: Optional[Union[str, Path]] = None):
        self.cache_dir = Path(cache_dir or os.getenv("TTS_CACHE_DIR", "cache/audio")).resolve()
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self._voices: Dict[str, List[Voice]] = {}
        logger.info(f"✅ [TTS] Cache directory initialized: {self.cache_dir}")

    def is_language_supported(self, language: str) -> bool:
        return _base_language(language) in SUPPORTED_LANGUAGES

    @staticmethod
    def cache_key(text: str, language: str, options: Optional[Dict[str, Any]] = None) -> str:
        serialized = json.dumps(options or {}, sort_keys=True, separators=(",", ":"))
        digest = hashlib.md5((text + language + serialized).encode("utf-8")).hexdigest()
        return f"{digest}.mp3"

    def _communicate_kwargs(self, language: str, options: Dict[str, Any]) -> Dict[str, str]:
        unknown = set(options) - ALLOWED_OPTIONS
        if unknown:
            raise TTSError(TTSError.INVALID_OPTIONS, f"Unknown options: {', '.join(sorted(unknown))}")

        kwargs = {"voice": options.get("voice") or DEFAULT_VOICES[_base_language(language)]}
        try:
            if options.get("rate") is not None:
                rate = float(options["rate"])
                if not 0.5 <= rate <= 2.0:
                    raise ValueError("rate must be between 0.5 and 2.0")
                kwargs["rate"] = f"{int(round((rate - 1.0) * 100)):+d}%"
            if options.get("volume") is not None:
                volume = float(options["volume"])
                if not 0.0 <= volume <= 1.0:
                    raise ValueError("volume must be between 0.0 and 1.0")
                kwargs["volume"] = f"{int(round((volume - 1.0) * 100)):+d}%"
            if options.get("pitch") is not None:
                kwargs["pitch"] = f"{int(options['pitch']):+d}Hz"
        except (TypeError, ValueError) as e:
            raise TTSError(TTSError.INVALID_OPTIONS, f"Invalid options: {e}")

        if options.get("format", "mp3") != "mp3":
            raise TTSError(TTSError.INVALID_OPTIONS, f"Unsupported format: {options['format']}")
        return kwargs

    async def synthesize(self, text: str, language: str, options: Optional[Dict[str, Any]] = None) -> Path:
        """
        Synthesize text to an mp3 file, reusing the cached file when present.

        Returns:
            Path of the audio file

        Raises:
            TTSError: UNSUPPORTED_LANGUAGE, INVALID_OPTIONS or SYNTHESIS_FAILED
        """
        if not self.is_language_supported(language):
            raise TTSError(TTSError.UNSUPPORTED_LANGUAGE, f"Language {language} is not supported")

        options = options or {}
        kwargs = self._communicate_kwargs(language, options)
        cache_path = self.cache_dir / self.cache_key(text, language, options)

        if cache_path.exists() and cache_path.stat().st_size > 0:
            logger.info(f"💾 [TTS] Using cached audio file: {cache_path.name}")
            return cache_path

        logger.info(f"🔊 [TTS] Synthesizing {len(text)} chars with {kwargs['voice']}")
        try:
            communicate = edge_tts.Communicate(text, **kwargs)
            await communicate.save(str(cache_path))
        except Exception as e:
            cache_path.unlink(missing_ok=True)
            raise TTSError(TTSError.SYNTHESIS_FAILED, f"Failed to synthesize speech: {e}")

        if not cache_path.exists() or cache_path.stat().st_size == 0:
            cache_path.unlink(missing_ok=True)
            raise TTSError(TTSError.SYNTHESIS_FAILED, "Audio file was created but is empty")

        logger.info(f"✅ [TTS] Audio file generated: {cache_path.stat().st_size} bytes")
        return cache_path

    async def get_voices(self, language: str) -> List[Voice]:
        """Voices for a language (cached); falls back to a default entry on error."""
        if language in self._voices:
            return self._voices[language]

        try:
            available = await edge_tts.list_voices()
            voices = [
                Voice(
                    id=v["ShortName"],
                    name=v.get("FriendlyName", v["ShortName"]),
                    language=v["Locale"],
                    gender=str(v.get("Gender", "")).lower(),
                )
                for v in available
                if v.get("Locale", "").lower().startswith(language.lower())
            ]
        except Exception as e:
            logger.error(f"❌ [TTS] Failed to get voices: {e}")
            voices = [Voice(id="default", name="System Default", language=language, gender="female")]

        self._voices[language] = voices
        return voices

    def cleanup(self, max_age_days: int = 7, force_all: bool = False) -> int:
        """
        Delete cached audio older than max_age_days (or everything).

        Returns:
            Number of files removed
        """
        removed = 0
        cutoff = time.time() - max_age_days * SECONDS_PER_DAY
        for path in self.cache_dir.iterdir():
            if not path.is_file():
                continue
            try:
                if force_all or path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
            except OSError as e:
                logger.warning(f"⚠️ [TTS] Failed to remove {path.name}: {e}")

        if removed:
            logger.info(f"🧹 [TTS] Cleaned up {removed} cached audio files")
        return removed
