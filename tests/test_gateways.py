"""Tests for the HTTP gateways against httpx.MockTransport."""

import json
import unittest

import httpx

from voicerelay.gateways.fast_ack import ConversationHistory, FastAckGateway
from voicerelay.gateways.synthesis import SynthesisGateway
from voicerelay.gateways.transcription import TranscriptionGateway
from voicerelay.utils.config import FastAckConfig, SynthesisConfig, TranscriptionConfig
from voicerelay.utils.errors import (
    EmptyAudioError,
    FastAckError,
    GatewayError,
    SynthesisError,
    TranscriptionError,
)


def chat_response(content):
    return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": content}}]})


class TestConversationHistory(unittest.TestCase):

    def test_system_prompt_first_then_turns(self):
        history = ConversationHistory(system_prompt="Be brief.", max_messages=10)
        history.add_user_turn("hi")
        history.add_assistant_turn("hello")
        self.assertEqual(history.get_messages_for_llm(), [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
        ])

    def test_bounded_to_most_recent_turns(self):
        history = ConversationHistory(system_prompt="sys", max_messages=10)
        for i in range(8):
            history.add_user_turn(f"u{i}")
            history.add_assistant_turn(f"a{i}")
        self.assertEqual(len(history), 10)

        messages = history.get_messages_for_llm(pending_user_text="latest")
        self.assertEqual(messages[0]["role"], "system")
        self.assertEqual(len(messages), 11)
        self.assertEqual(messages[-1], {"role": "user", "content": "latest"})
        self.assertNotIn({"role": "user", "content": "u0"}, messages)

    def test_clear(self):
        history = ConversationHistory()
        history.add_user_turn("x")
        history.clear()
        self.assertEqual(len(history), 0)
        self.assertEqual(history.get_messages_for_llm(), [])


class TestFastAckGateway(unittest.IsolatedAsyncioTestCase):

    def _gateway(self, handler, **overrides) -> FastAckGateway:
        config = FastAckConfig(api_key="gsk-test", **overrides)
        return FastAckGateway(config, transport=httpx.MockTransport(handler))

    async def test_sends_history_and_records_turns(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.read())
            return chat_response("  Sure, creating that file now.  ")

        gateway = self._gateway(handler)
        history = gateway.new_history()
        reply = await gateway.generate("create notes.md", history)

        self.assertEqual(reply, "Sure, creating that file now.")
        self.assertEqual(seen["url"], "https://api.groq.com/openai/v1/chat/completions")
        self.assertEqual(seen["auth"], "Bearer gsk-test")
        self.assertEqual(seen["body"]["model"], "llama-3.3-70b-versatile")
        self.assertEqual(seen["body"]["temperature"], 0.7)
        self.assertEqual(seen["body"]["max_tokens"], 1024)
        self.assertEqual(seen["body"]["messages"][0]["role"], "system")
        self.assertEqual(seen["body"]["messages"][-1], {"role": "user", "content": "create notes.md"})
        self.assertEqual(len(history), 2)

    async def test_failure_leaves_history_untouched(self):
        gateway = self._gateway(lambda request: httpx.Response(500, text="upstream down"))
        history = gateway.new_history()
        with self.assertRaises(FastAckError) as ctx:
            await gateway.generate("hello", history)
        self.assertEqual(ctx.exception.status_code, 500)
        self.assertIn("fast_ack", str(ctx.exception))
        self.assertEqual(len(history), 0)

    async def test_empty_reply_is_replaced(self):
        gateway = self._gateway(lambda request: chat_response(""))
        reply = await gateway.generate("hello", gateway.new_history())
        self.assertEqual(reply, "No response generated")

    async def test_malformed_response(self):
        gateway = self._gateway(lambda request: httpx.Response(200, text="<html>"))
        with self.assertRaises(FastAckError):
            await gateway.generate("hello", gateway.new_history())

    async def test_non_string_content_is_malformed(self):
        gateway = self._gateway(
            lambda request: httpx.Response(200, json={"choices": [{"message": {"content": [{"text": "hi"}]}}]})
        )
        history = gateway.new_history()
        with self.assertRaises(FastAckError):
            await gateway.generate("hello", history)
        self.assertEqual(len(history), 0)

    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        gateway = self._gateway(handler)
        with self.assertRaises(FastAckError):
            await gateway.generate("hello", gateway.new_history())

    async def test_missing_key(self):
        gateway = FastAckGateway(FastAckConfig(api_key=""))
        with self.assertRaises(FastAckError):
            await gateway.generate("hello", gateway.new_history())


class TestTranscriptionGateway(unittest.IsolatedAsyncioTestCase):

    async def test_uploads_audio_as_multipart(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["url"] = str(request.url)
            seen["body"] = request.read()
            seen["content_type"] = request.headers["Content-Type"]
            return httpx.Response(200, json={"text": " create a file called notes.md "})

        gateway = TranscriptionGateway(
            TranscriptionConfig(api_key="gsk-test"), transport=httpx.MockTransport(handler)
        )
        text = await gateway.transcribe(b"\x1aE\xdf\xa3webm-bytes")

        self.assertEqual(text, "create a file called notes.md")
        self.assertEqual(seen["url"], "https://api.groq.com/openai/v1/audio/transcriptions")
        self.assertTrue(seen["content_type"].startswith("multipart/form-data"))
        self.assertIn(b'filename="audio.webm"', seen["body"])
        self.assertIn(b"audio/webm", seen["body"])
        self.assertIn(b"whisper-large-v3-turbo", seen["body"])
        self.assertIn(b"webm-bytes", seen["body"])

    async def test_empty_audio_is_rejected_before_any_request(self):
        def handler(request):
            raise AssertionError("no request expected")

        gateway = TranscriptionGateway(TranscriptionConfig(api_key=""), transport=httpx.MockTransport(handler))
        with self.assertRaises(EmptyAudioError):
            await gateway.transcribe(b"")

    async def test_provider_error(self):
        gateway = TranscriptionGateway(
            TranscriptionConfig(api_key="gsk-test"),
            transport=httpx.MockTransport(lambda request: httpx.Response(400, text="bad audio")),
        )
        with self.assertRaises(TranscriptionError) as ctx:
            await gateway.transcribe(b"noise")
        self.assertEqual(ctx.exception.status_code, 400)
        self.assertNotIsInstance(ctx.exception, EmptyAudioError)

    async def test_non_string_text_is_malformed(self):
        gateway = TranscriptionGateway(
            TranscriptionConfig(api_key="gsk-test"),
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"text": 42})),
        )
        with self.assertRaises(TranscriptionError):
            await gateway.transcribe(b"noise")

    async def test_missing_key(self):
        with self.assertRaises(TranscriptionError):
            await TranscriptionGateway(TranscriptionConfig(api_key="")).transcribe(b"noise")


class TestSynthesisGateway(unittest.IsolatedAsyncioTestCase):

    async def test_returns_audio_bytes(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.read())
            return httpx.Response(200, content=b"ID3mp3data", headers={"Content-Type": "audio/mpeg"})

        gateway = SynthesisGateway(SynthesisConfig(api_key="sk-test"), transport=httpx.MockTransport(handler))
        audio = await gateway.synthesize("Sure, on it.")

        self.assertEqual(audio, b"ID3mp3data")
        self.assertEqual(seen["url"], "https://api.openai.com/v1/audio/speech")
        self.assertEqual(seen["body"], {"model": "tts-1", "input": "Sure, on it.", "voice": "nova", "speed": 1.0})

    async def test_errors(self):
        cases = [
            (SynthesisConfig(enabled=False, api_key="sk"), "hello", None),
            (SynthesisConfig(api_key=""), "hello", None),
            (SynthesisConfig(api_key="sk"), "   ", None),
            (SynthesisConfig(api_key="sk"), "hello", httpx.Response(429, text="slow down")),
            (SynthesisConfig(api_key="sk"), "hello", httpx.Response(200, content=b"")),
        ]
        for config, text, response in cases:
            with self.subTest(config=config, text=text, response=response):
                transport = httpx.MockTransport(lambda request, r=response: r)
                gateway = SynthesisGateway(config, transport=transport)
                with self.assertRaises(SynthesisError):
                    await gateway.synthesize(text)

    async def test_errors_share_gateway_base(self):
        self.assertTrue(issubclass(SynthesisError, GatewayError))
        self.assertTrue(issubclass(EmptyAudioError, TranscriptionError))


if __name__ == "__main__":
    unittest.main()
