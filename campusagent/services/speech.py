from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import requests

from .redaction import redact_sensitive_text


@dataclass(frozen=True)
class Transcription:
    text: str
    duration: float | None = None
    segments: list[dict[str, Any]] = field(default_factory=list)


class SpeechClient:
    """Fish Audio text-to-speech and speech-to-text."""

    def __init__(
        self,
        api_key: str | None,
        voice_model_id: str | None = None,
        base_url: str = "https://api.fish.audio/v1",
        timeout_seconds: int = 60,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.voice_model_id = (voice_model_id or "").strip() or None
        self.base_url = (base_url or "").rstrip("/")
        self.timeout_seconds = max(1, int(timeout_seconds))

    def is_configured(self) -> bool:
        return bool(self.api_key and self.base_url)

    def text_to_speech(self, text: str) -> bytes:
        self._ensure_configured()
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        body: dict[str, Any] = {"text": text, "format": "mp3"}
        if self.voice_model_id:
            body["reference_id"] = self.voice_model_id
            headers["model"] = self.voice_model_id
        response = requests.post(
            f"{self.base_url}/tts",
            headers=headers,
            json=body,
            timeout=self.timeout_seconds,
        )
        self._raise_for_error(response, "generate speech")
        return response.content

    def speech_to_text(
        self,
        audio: bytes,
        language: str | None = None,
        filename: str = "recording.webm",
        content_type: str = "audio/webm",
    ) -> str:
        return self.speech_to_text_with_details(
            audio, language=language, filename=filename, content_type=content_type
        ).text

    def speech_to_text_with_details(
        self,
        audio: bytes,
        language: str | None = None,
        filename: str = "recording.webm",
        content_type: str = "audio/webm",
    ) -> Transcription:
        self._ensure_configured()
        headers = {"Authorization": f"Bearer {self.api_key}"}
        data: dict[str, str] = {}
        if language:
            headers["language"] = language
            data["language"] = language
        response = requests.post(
            f"{self.base_url}/asr",
            headers=headers,
            files={"audio": (filename, audio, content_type)},
            data=data,
            timeout=self.timeout_seconds,
        )
        self._raise_for_error(response, "transcribe audio")
        payload = response.json()
        if not isinstance(payload, dict):
            raise RuntimeError("Speech recognition returned unexpected payload.")
        duration = payload.get("duration")
        segments = payload.get("segments")
        return Transcription(
            text=str(payload.get("text") or ""),
            duration=float(duration) if isinstance(duration, (int, float)) else None,
            segments=[row for row in segments if isinstance(row, dict)]
            if isinstance(segments, list)
            else [],
        )

    def _ensure_configured(self) -> None:
        if not self.is_configured():
            raise RuntimeError("Speech API key not configured. Set FISH_API_KEY in your .env file.")

    @staticmethod
    def _raise_for_error(response: requests.Response, action: str) -> None:
        if response.ok:
            return
        detail = redact_sensitive_text(response.text.strip())
        raise RuntimeError(
            f"Failed to {action}: HTTP {response.status_code} {detail[:400] or 'request failed'}"
        )
