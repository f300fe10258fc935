import io
import json
import os
import sys
import unittest
import urllib.error
from pathlib import Path
from unittest import mock

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from daybook import provider  # noqa: E402
from daybook.errors import ConfigError, ProviderError  # noqa: E402

KEY_ENV = "DAYBOOK_TEST_API_KEY"
MESSAGES = [provider.system_message("be brief"), provider.user_message("hello")]


def fake_response(payload) -> mock.MagicMock:
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    cm = mock.MagicMock()
    cm.__enter__.return_value.read.return_value = body
    return cm


class OpenAICompatibleProviderTests(unittest.TestCase):
    def setUp(self):
        self.provider = provider.OpenAICompatibleProvider(
            api_base="https://llm.example.com/v1/",
            model="test-model",
            api_key_env=KEY_ENV,
        )
        patcher = mock.patch.dict(os.environ, {KEY_ENV: "secret"})
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_complete_posts_chat_request(self):
        response = fake_response({"choices": [{"message": {"role": "assistant", "content": "# Note"}}]})
        with mock.patch.object(provider.urllib.request, "urlopen", return_value=response) as urlopen:
            result = self.provider.complete(MESSAGES)

        self.assertEqual("# Note", result)
        request = urlopen.call_args[0][0]
        self.assertEqual("https://llm.example.com/v1/chat/completions", request.full_url)
        self.assertEqual("POST", request.get_method())
        self.assertEqual("Bearer secret", request.get_header("Authorization"))
        body = json.loads(request.data.decode())
        self.assertEqual("test-model", body["model"])
        self.assertEqual(MESSAGES, body["messages"])
        self.assertEqual(0.3, body["temperature"])

    def test_missing_api_key(self):
        with mock.patch.dict(os.environ, {KEY_ENV: ""}), \
                mock.patch.object(provider.urllib.request, "urlopen") as urlopen:
            with self.assertRaisesRegex(ProviderError, KEY_ENV):
                self.provider.complete(MESSAGES)
        urlopen.assert_not_called()

    def test_http_error(self):
        error = urllib.error.HTTPError(
            self.provider.url, 401, "Unauthorized", {}, io.BytesIO(b'{"error": "bad key"}')
        )
        with mock.patch.object(provider.urllib.request, "urlopen", side_effect=error):
            with self.assertRaisesRegex(ProviderError, "HTTP 401"):
                self.provider.complete(MESSAGES)

    def test_transport_error(self):
        with mock.patch.object(
            provider.urllib.request, "urlopen", side_effect=urllib.error.URLError("connection refused")
        ):
            with self.assertRaisesRegex(ProviderError, "Request failed"):
                self.provider.complete(MESSAGES)

    def test_invalid_json(self):
        with mock.patch.object(provider.urllib.request, "urlopen", return_value=fake_response(b"<html>")):
            with self.assertRaisesRegex(ProviderError, "parse"):
                self.provider.complete(MESSAGES)

    def test_missing_content(self):
        for payload in ({"choices": []}, {"choices": [{"message": {}}]}, {"error": "x"},
                        {"choices": [{"message": {"content": None}}]}):
            with self.subTest(payload=payload), \
                    mock.patch.object(provider.urllib.request, "urlopen", return_value=fake_response(payload)):
                with self.assertRaisesRegex(ProviderError, "No content"):
                    self.provider.complete(MESSAGES)

    def test_url_keeps_full_endpoint(self):
        p = provider.OpenAICompatibleProvider(api_base="http://localhost:11434/v1/chat/completions")
        self.assertEqual("http://localhost:11434/v1/chat/completions", p.url)


class BuildProviderTests(unittest.TestCase):
    def test_openai_compatible_from_config(self):
        p = provider.build_provider({
            "provider": "openai-compatible",
            "model": "m",
            "api_base": "https://api.example.com/v1",
            "api_key_env": "X_KEY",
        })
        self.assertIsInstance(p, provider.OpenAICompatibleProvider)
        self.assertEqual(("m", "https://api.example.com/v1", "X_KEY"), (p.model, p.api_base, p.api_key_env))

    def test_aliases(self):
        for name in ("openai", "OpenAI Compatible", "openai_compatible"):
            with self.subTest(name=name):
                self.assertIsInstance(provider.build_provider({"provider": name}),
                                      provider.OpenAICompatibleProvider)

    def test_unknown_provider(self):
        with self.assertRaises(ConfigError):
            provider.build_provider({"provider": "carrier-pigeon"})


if __name__ == "__main__":
    unittest.main()
