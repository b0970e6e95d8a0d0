# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

import logging
from typing import Any, Protocol

import requests

from backend.errors import UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_TTS_MODEL = "gpt-4o-mini-tts"
REQUEST_TIMEOUT = 60  # seconds
RESPONSE_FORMAT = "mp3"


class SpeechSynthesizer(Protocol):
    """What the TTS route needs from a speech provider."""

    model: str

    def synthesize(self, text: str, voice: str) -> bytes:
        ...


def extract_error_message(payload: Any, status_code: int) -> str:
    """
    Pulls the provider's error text out of a JSON error body.

    Args:
        payload: The decoded JSON body (anything, when the body was not JSON).
        status_code (int): The HTTP status, used for the generic message.

    Returns:
        str: ``error.message``, else a string ``error``, else a generic text.
    """
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
        if isinstance(error, str):
            return error
    return f"TTS error ({status_code})"


class OpenAiTtsClient:
    """Calls the OpenAI speech endpoint and returns raw MP3 bytes."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_TTS_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = REQUEST_TIMEOUT,
    ):
        if not api_key:
            raise ValueError("An OpenAI API key is required")
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def synthesize(self, text: str, voice: str) -> bytes:
        """
        Synthesizes ``text`` with ``voice``.

        Raises:
            UpstreamError: If the provider answers with a non-2xx status or
                cannot be reached.
        """
        try:
            response = requests.post(
                f"{self.base_url}/audio/speech",
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self.api_key}",
                },
                json={
                    "model": self.model,
                    "voice": voice,
                    "input": text,
                    "response_format": RESPONSE_FORMAT,
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("TTS request failed: %s", e)
            raise UpstreamError(502, "TTS provider unreachable.") from e

        if not response.ok:
            try:
                payload = response.json()
            except ValueError:
                payload = {}
            message = extract_error_message(payload, response.status_code)
            logger.warning("TTS provider returned %s: %s", response.status_code, message)
            raise UpstreamError(response.status_code, message)

        return response.content
