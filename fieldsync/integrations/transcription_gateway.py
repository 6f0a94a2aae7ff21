"""
Transcription gateway: speech-to-text and splice-connection extraction.

All outbound HTTP calls to the transcription provider go through this
class. It speaks the OpenAI-compatible REST surface:

  - POST {base}/audio/transcriptions   (multipart, returns {"text": ...})
  - POST {base}/chat/completions       (extraction prompt, JSON reply)

Retries are owned by ``MediaProcessingQueue``; a failed call raises
``TranscriptionError`` and the queue decides whether to try again.

Testability: pass a mock ``session`` to TranscriptionGateway() in tests
instead of letting it create a real requests.Session internally.
"""

from __future__ import annotations

import json
import logging
import os
import re

import requests

logger = logging.getLogger(__name__)

# ── Default request timeouts (seconds) ─────────────────────────────────────
_TRANSCRIBE_TIMEOUT = 120
_EXTRACT_TIMEOUT = 60

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

BUFFER_TUBE_COLOURS = (
    "blue", "orange", "green", "brown", "slate", "white",
    "red", "black", "yellow", "violet", "rose", "aqua",
)

EXTRACTION_SYSTEM_PROMPT = f"""You extract fibre optic splice connection data from voice transcriptions.

The technician describes fibre-to-fibre splice connections in a voice memo.
Return a JSON object with exactly this structure:
{{
  "connections": [
    {{
      "incomingCable": "cable identifier",
      "incomingFiber": <integer>,
      "incomingBufferTube": "colour or identifier",
      "outgoingCable": "cable identifier",
      "outgoingFiber": <integer>,
      "outgoingBufferTube": "colour or identifier",
      "notes": "any additional notes"
    }}
  ]
}}

Rules:
- Extract every connection mentioned, using the exact cable identifiers spoken.
- Fibre numbers are integers. Omit fields that are not mentioned.
- Common buffer tube colours: {", ".join(BUFFER_TUBE_COLOURS)}.
- If the transcription does not describe connections, return an empty connections array."""


class TranscriptionError(Exception):
    """Raised when the provider call fails or returns an unusable body.

    ``str(exc)`` carries provider detail for the logs only; ``client_message``
    is the fixed text that may be stored on a recording and shown to callers.
    """

    def __init__(self, message: str, client_message: str = "Transcription service unavailable"):
        super().__init__(message)
        self.client_message = client_message


def _as_fiber(value) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def validate_connection(raw: dict) -> dict:
    """Coerce one extracted connection; optional fields are dropped when empty."""
    conn = {
        "incomingCable": raw.get("incomingCable") or "",
        "incomingFiber": _as_fiber(raw.get("incomingFiber")),
        "outgoingCable": raw.get("outgoingCable") or "",
        "outgoingFiber": _as_fiber(raw.get("outgoingFiber")),
    }
    for key in ("incomingBufferTube", "outgoingBufferTube", "notes"):
        if raw.get(key):
            conn[key] = raw[key]
    return conn


def parse_extraction(content: str | None) -> dict:
    """Pull ``{"connections": [...]}`` out of a model reply.

    Unparseable or malformed replies yield an empty connection list.
    """
    if not content:
        return {"connections": []}
    match = _JSON_OBJECT.search(content)
    if not match:
        logger.warning("Extraction reply contained no JSON object")
        return {"connections": []}
    try:
        data = json.loads(match.group(0))
    except ValueError:
        logger.warning("Extraction reply was not valid JSON")
        return {"connections": []}
    connections = data.get("connections") if isinstance(data, dict) else None
    if not isinstance(connections, list):
        return {"connections": []}
    return {"connections": [validate_connection(c) for c in connections if isinstance(c, dict)]}


class TranscriptionGateway:
    """OpenAI-compatible transcription + extraction client.

    Usage:
        gateway = TranscriptionGateway.from_config(current_app.config)
        text = gateway.transcribe("/uploads/field-audio/audio-1.webm")
        data = gateway.extract_splice_data(text)
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None,
        *,
        transcription_model: str = "whisper-1",
        extraction_model: str = "gpt-4o-mini",
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.transcription_model = transcription_model
        self.extraction_model = extraction_model
        self._session = session

    @classmethod
    def from_config(cls, config, session: requests.Session | None = None) -> "TranscriptionGateway":
        return cls(
            config.get("TRANSCRIPTION_API_URL", "https://api.openai.com/v1"),
            config.get("TRANSCRIPTION_API_KEY"),
            transcription_model=config.get("TRANSCRIPTION_MODEL", "whisper-1"),
            extraction_model=config.get("EXTRACTION_MODEL", "gpt-4o-mini"),
            session=session,
        )

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def _headers(self) -> dict:
        if not self.api_key:
            raise TranscriptionError(
                "Transcription API key is not configured",
                client_message="Transcription API key is not configured",
            )
        return {"Authorization": f"Bearer {self.api_key}"}

    def _post(self, path: str, *, timeout: int, **kwargs) -> dict:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.post(url, headers=self._headers(), timeout=timeout, **kwargs)
        except requests.Timeout as exc:
            raise TranscriptionError(
                f"Request to {path} timed out after {timeout}s",
                client_message="Transcription timed out",
            ) from exc
        except requests.RequestException as exc:
            raise TranscriptionError(f"Network error calling {path}: {exc}") from exc

        if not resp.ok:
            raise TranscriptionError(f"HTTP {resp.status_code} from {path}: {resp.text[:300]}")
        try:
            return resp.json()
        except ValueError as exc:
            raise TranscriptionError(f"Non-JSON response from {path}") from exc

    # ── Operations ───────────────────────────────────────────────────────

    def transcribe(self, file_path: str) -> str:
        if not os.path.exists(file_path):
            raise TranscriptionError(
                f"Audio file not found: {os.path.basename(file_path)}",
                client_message="Audio file not found",
            )
        with open(file_path, "rb") as fh:
            body = self._post(
                "/audio/transcriptions",
                timeout=_TRANSCRIBE_TIMEOUT,
                files={"file": (os.path.basename(file_path), fh)},
                data={"model": self.transcription_model},
            )
        return body.get("text") or ""

    def extract_splice_data(self, transcription: str) -> dict:
        if not transcription.strip():
            return {"connections": []}
        body = self._post(
            "/chat/completions",
            timeout=_EXTRACT_TIMEOUT,
            json={
                "model": self.extraction_model,
                "temperature": 0.3,
                "messages": [
                    {"role": "system", "content": EXTRACTION_SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": f"Extract fibre splice connections from this transcription:\n\n{transcription}",
                    },
                ],
            },
        )
        try:
            content = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            content = None
        return parse_extraction(content)
