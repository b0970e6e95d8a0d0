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
import unittest
from unittest.mock import MagicMock, patch

import requests

from backend.errors import UpstreamError
from models.openai_tts import OpenAiTtsClient, extract_error_message


def _response(status_code, content=b"", payload=None):
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.content = content
    if payload is None:
        response.json.side_effect = ValueError("not json")
    else:
        response.json.return_value = payload
    return response


class TestExtractErrorMessage(unittest.TestCase):
    def test_nested_message(self):
        payload = {"error": {"message": "Invalid voice", "type": "invalid_request"}}
        self.assertEqual(extract_error_message(payload, 400), "Invalid voice")

    def test_string_error(self):
        self.assertEqual(extract_error_message({"error": "nope"}, 500), "nope")

    def test_generic_message(self):
        self.assertEqual(extract_error_message({}, 503), "TTS error (503)")
        self.assertEqual(extract_error_message("<html>", 502), "TTS error (502)")


class TestOpenAiTtsClient(unittest.TestCase):
    def setUp(self):
        self.client = OpenAiTtsClient(
            api_key="sk-test", base_url="https://tts.example.com/v1/", timeout=5
        )

    def test_requires_api_key(self):
        with self.assertRaises(ValueError):
            OpenAiTtsClient(api_key="")

    @patch("models.openai_tts.requests.post")
    def test_synthesize(self, mock_post):
        mock_post.return_value = _response(200, content=b"ID3-audio")

        audio = self.client.synthesize("Bonjour", "nova")

        self.assertEqual(audio, b"ID3-audio")
        mock_post.assert_called_once()
        args, kwargs = mock_post.call_args
        self.assertEqual(args[0], "https://tts.example.com/v1/audio/speech")
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer sk-test")
        self.assertEqual(
            kwargs["json"],
            {
                "model": "gpt-4o-mini-tts",
                "voice": "nova",
                "input": "Bonjour",
                "response_format": "mp3",
            },
        )
        self.assertEqual(kwargs["timeout"], 5)

    @patch("models.openai_tts.requests.post")
    def test_provider_error(self, mock_post):
        mock_post.return_value = _response(
            429, payload={"error": {"message": "Rate limit reached"}}
        )
        with self.assertRaises(UpstreamError) as ctx:
            self.client.synthesize("Bonjour", "nova")
        self.assertEqual(ctx.exception.status_code, 429)
        self.assertEqual(ctx.exception.message, "Rate limit reached")

    @patch("models.openai_tts.requests.post")
    def test_non_json_error_body(self, mock_post):
        mock_post.return_value = _response(500)
        with self.assertRaises(UpstreamError) as ctx:
            self.client.synthesize("Bonjour", "nova")
        self.assertEqual(ctx.exception.message, "TTS error (500)")

    @patch("models.openai_tts.requests.post")
    def test_unreachable_provider(self, mock_post):
        mock_post.side_effect = requests.ConnectionError("refused")
        with self.assertRaises(UpstreamError) as ctx:
            self.client.synthesize("Bonjour", "nova")
        self.assertEqual(ctx.exception.status_code, 502)


if __name__ == "__main__":
    unittest.main()
