"""Tests for the turn pipeline with fake gateways."""

import base64
import tempfile
import unittest
from pathlib import Path

from voicerelay.gateways.agent import AgentEvent
from voicerelay.relay.orchestrator import TurnOrchestrator
from voicerelay.relay.session import SessionRegistry
from voicerelay.relay.workspace import WorkspaceManager
from voicerelay.utils.errors import FastAckError, SynthesisError

from tests.fakes import Collector, FakeAgent, FakeFastAck, FakeSynthesizer


class OrchestratorTestCase(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.workspaces = WorkspaceManager(Path(self._tmp.name) / "workspace")
        self.fast_ack = FakeFastAck(reply="On it.")
        self.synth = FakeSynthesizer()
        self.agent = FakeAgent()
        self.registry = SessionRegistry(history_factory=self.fast_ack.new_history)
        self.sent = Collector()
        self.session = await self.registry.open(self.sent)
        await self.registry.identify(self.session, "alice")

    async def asyncTearDown(self):
        self._tmp.cleanup()

    def orchestrator(self, **overrides) -> TurnOrchestrator:
        kwargs = dict(
            registry=self.registry,
            fast_ack=self.fast_ack,
            synthesizer=self.synth,
            agent=self.agent,
            workspaces=self.workspaces,
        )
        kwargs.update(overrides)
        return TurnOrchestrator(**kwargs)


class TestFastPath(OrchestratorTestCase):

    async def test_small_talk_gets_reply_and_speech_only(self):
        await self.orchestrator().run_turn(self.session, "hello there")

        self.assertEqual(self.sent.types, ["groq_response", "tts_audio"])
        self.assertEqual(self.sent.messages[0]["content"], "On it.")
        self.assertEqual(base64.b64decode(self.sent.messages[1]["data"]), b"ID3-audio")
        self.assertEqual(self.synth.calls, ["On it."])
        self.assertEqual(self.agent.calls, [])

    async def test_fast_ack_failure_stops_the_turn(self):
        self.fast_ack.error = FastAckError("rate limited", status_code=429)
        await self.orchestrator().run_turn(self.session, "create a file")

        self.assertEqual(self.sent.messages, [{"type": "error", "content": "Failed to generate response"}])
        self.assertEqual(self.synth.calls, [])
        self.assertEqual(self.agent.calls, [])

    async def test_speech_failure_is_not_fatal(self):
        self.synth.error = SynthesisError("Speech request rejected", status_code=500)
        await self.orchestrator().run_turn(self.session, "create a file")

        self.assertNotIn("tts_audio", self.sent.types)
        self.assertNotIn("error", self.sent.types)
        self.assertEqual(self.sent.types[0], "groq_response")
        self.assertEqual(self.sent.types[-1], "agent_result")

    async def test_without_synthesizer(self):
        await self.orchestrator(synthesizer=None).run_turn(self.session, "hello")
        self.assertEqual(self.sent.types, ["groq_response"])

    async def test_history_is_per_user(self):
        orchestrator = self.orchestrator()
        await orchestrator.run_turn(self.session, "hello")
        other = await self.registry.open(Collector())
        await self.registry.identify(other, "bob")
        await orchestrator.run_turn(other, "hi")

        self.assertEqual(len(self.session.user.history), 2)
        self.assertEqual(len(other.user.history), 2)
        self.assertIsNot(self.session.user.history, other.user.history)


class TestAgentPath(OrchestratorTestCase):

    async def test_event_order(self):
        await self.orchestrator().run_turn(self.session, "Create a file called notes.md")

        self.assertEqual(self.sent.types, [
            "groq_response",
            "tts_audio",
            "agent_system_init",
            "agent_assistant",
            "tts_audio",
            "agent_result",
        ])
        self.assertEqual(self.synth.calls, ["On it.", "Creating notes.md now."])

    async def test_agent_runs_in_user_workspace(self):
        await self.orchestrator().run_turn(self.session, "create notes.md")

        prompt, token, cwd = self.agent.calls[0]
        self.assertEqual(prompt, "create notes.md")
        self.assertIsNone(token)
        self.assertEqual(Path(cwd), (Path(self._tmp.name) / "workspace" / "user-alice").resolve())
        self.assertTrue(Path(cwd).is_dir())

    async def test_resume_token_carries_over(self):
        orchestrator = self.orchestrator()
        await orchestrator.run_turn(self.session, "create notes.md")
        self.assertEqual(self.session.agent_session_token, "sess-1")

        self.agent.events = [
            AgentEvent(kind="result", content="Appended", data={"session_id": "sess-2", "is_error": False}),
        ]
        await orchestrator.run_turn(self.session, "append a line to notes.md")
        self.assertEqual(self.agent.calls[1][1], "sess-1")
        self.assertEqual(self.session.agent_session_token, "sess-2")

    async def test_agent_error_event(self):
        self.agent.events = [AgentEvent(kind="error", content="CLI crashed")]
        await self.orchestrator().run_turn(self.session, "run the tests")

        self.assertEqual(self.sent.types[-2:], ["agent_error", "error"])
        self.assertEqual(self.sent.messages[-1]["content"], "Agent could not complete the task")

    async def test_error_result_also_reports_error(self):
        self.agent.events = [
            AgentEvent(kind="result", content="Agent stopped: error_max_turns",
                       data={"session_id": "sess-1", "is_error": True}),
        ]
        await self.orchestrator().run_turn(self.session, "run the tests")
        self.assertEqual(self.sent.types[-2:], ["agent_result", "error"])

    async def test_stream_without_terminal_event(self):
        self.agent.events = [AgentEvent(kind="assistant", content="")]
        await self.orchestrator().run_turn(self.session, "run the tests")

        self.assertEqual(self.sent.types[-2:], ["agent_error", "error"])
        self.assertEqual(self.sent.messages[-2]["content"], "Agent stream ended without a result")
        # empty assistant text is not spoken
        self.assertEqual(self.synth.calls, ["On it."])

    async def test_agent_timeout(self):
        self.agent.events = [AgentEvent(kind="system_init", data={"session_id": "sess-1"})]
        self.agent.hang = True
        await self.orchestrator(agent_timeout=0.05).run_turn(self.session, "run the tests")

        self.assertEqual(self.sent.types[-2:], ["agent_error", "error"])
        self.assertEqual(self.sent.messages[-2]["content"], "Agent exceeded its time budget")
        self.assertEqual(self.session.agent_session_token, "sess-1")

    async def test_exactly_one_terminal_event(self):
        await self.orchestrator().run_turn(self.session, "create notes.md")
        terminal = [t for t in self.sent.types if t in ("agent_result", "agent_error")]
        self.assertEqual(terminal, ["agent_result"])

    async def test_disabled_agent_is_skipped(self):
        self.agent.enabled = False
        await self.orchestrator().run_turn(self.session, "create notes.md")
        self.assertEqual(self.sent.types, ["groq_response", "tts_audio"])

    async def test_custom_classifier(self):
        await self.orchestrator(classifier=lambda text: True).run_turn(self.session, "hello")
        self.assertEqual(len(self.agent.calls), 1)


class TestSameUserTwoConnections(OrchestratorTestCase):

    async def test_agent_turns_of_one_user_never_overlap(self):
        self.agent.delay = 0.02
        other_sent = Collector()
        other = await self.registry.open(other_sent)
        await self.registry.identify(other, "alice")

        orchestrator = self.orchestrator()
        self.session.schedule(lambda: orchestrator.run_turn(self.session, "create notes.md"))
        other.schedule(lambda: orchestrator.run_turn(other, "create todo.md"))

        self.assertTrue(await self.session.drain(2))
        self.assertTrue(await other.drain(2))

        self.assertEqual(self.agent.max_active, 1)
        self.assertEqual([call[1] for call in self.agent.calls], [None, "sess-1"])
        self.assertIn("agent_result", self.sent.types)
        self.assertIn("agent_result", other_sent.types)

    async def test_different_users_still_run_side_by_side(self):
        self.agent.delay = 0.02
        other = await self.registry.open(Collector())
        await self.registry.identify(other, "bob")

        orchestrator = self.orchestrator()
        self.session.schedule(lambda: orchestrator.run_turn(self.session, "create notes.md"))
        other.schedule(lambda: orchestrator.run_turn(other, "create todo.md"))

        self.assertTrue(await self.session.drain(2))
        self.assertTrue(await other.drain(2))
        self.assertEqual(self.agent.max_active, 2)


if __name__ == "__main__":
    unittest.main()
