"""Tests for the long-term memory integration."""

import asyncio
import json

import httpx
import pytest

from contextguard.memory.client import MemoryClient
from contextguard.memory.extractor import (
    extract_memory_query,
    extract_work_in_progress,
    resolve_agent_id,
)
from contextguard.memory.processor import BackgroundTasks, MemoryExtractor, MemoryProcessor
from contextguard.memory.types import MemoryConfig, SessionMemoryState, WorkInProgress


# ── Helpers ─────────────────────────────────────────────────────────


class FakeMemoryService:
    """Records requests and answers them per path."""

    def __init__(self, responses=None, status_code=200):
        self.responses = responses or {}
        self.status_code = status_code
        self.requests: list[tuple[str, dict, httpx.Headers]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((request.url.path, json.loads(request.content), request.headers))
        return httpx.Response(self.status_code, json=self.responses.get(request.url.path, {}))

    def bodies(self, path: str) -> list[dict]:
        return [body for p, body, _ in self.requests if p == path]


def make_client(service, **config) -> MemoryClient:
    config.setdefault("api_url", "http://memory.test/")
    return MemoryClient(MemoryConfig(**config), transport=httpx.MockTransport(service))


DEPLOY_CONVERSATION = [
    {"role": "user", "content": "Please deploy the billing service to staging today"},
    {
        "role": "assistant",
        "content": (
            "I deployed the billing service container to staging. "
            "Next I need to run the database migrations. "
            "Error: connection refused from 10.0.0.5:5432\n"
            "password: hunter2secret\n"
            "$ docker compose up -d billing"
        ),
    },
]


# ── Client ──────────────────────────────────────────────────────────


class TestMemoryClient:
    @pytest.mark.asyncio
    async def test_query(self):
        service = FakeMemoryService({
            "/memory/query": {"results": [{"id": "1", "content": "port 8080"}, "junk"]}
        })
        client = make_client(service, api_key="mem-key")

        results = await client.query("x" * 2000)

        assert results == [{"id": "1", "content": "port 8080"}]
        path, body, headers = service.requests[0]
        assert path == "/memory/query"
        assert len(body["query"]) == 1000
        assert body["limit"] == 3
        assert body["min_similarity"] == 0.7
        assert headers["X-API-Key"] == "mem-key"

    @pytest.mark.asyncio
    async def test_http_error_degrades(self):
        client = make_client(FakeMemoryService(status_code=500))
        assert await client.query("anything") == []
        assert await client.store({"content": "x"}) is False

    @pytest.mark.asyncio
    async def test_connection_error_degrades(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = MemoryClient(MemoryConfig(), transport=httpx.MockTransport(refuse))
        assert await client.query("anything") == []
        assert await client.extract("conversation", "tester") is None

    @pytest.mark.asyncio
    async def test_extract(self):
        service = FakeMemoryService({"/extract": {"stored": True, "memory_id": "m-1"}})
        client = make_client(service)
        assert await client.extract("Human: hi", "tester") == "m-1"
        assert service.bodies("/extract")[0]["tags"] == ["continuous"]

    @pytest.mark.asyncio
    async def test_extract_nothing_stored(self):
        client = make_client(FakeMemoryService({"/extract": {"stored": False}}))
        assert await client.extract("Human: hi", "tester") is None

    @pytest.mark.asyncio
    async def test_store_summary(self):
        service = FakeMemoryService()
        client = make_client(service)
        assert await client.store_summary("tester", "did things")
        body = service.bodies("/memory/store")[0]
        assert body["content"] == "[COMPACTION SUMMARY] did things"
        assert body["importance"] == 0.6


# ── Extraction ──────────────────────────────────────────────────────


class TestExtractWorkInProgress:
    def test_deploy_conversation(self):
        wip = extract_work_in_progress(DEPLOY_CONVERSATION, ["deploy/billing.yaml"])

        assert wip is not None
        assert wip.task == "Please deploy the billing service to staging today"
        assert wip.context["password"] == "hunt..."
        assert wip.context["ip"] == "10.0.0.5:5432"
        assert "docker compose up -d billing" in wip.commands_run
        assert wip.pending
        assert wip.next_steps == wip.pending
        assert wip.error_states
        assert wip.files_modified == ["deploy/billing.yaml"]
        assert wip.progress[-1] == "Modified: deploy/billing.yaml"

    def test_no_task(self):
        assert extract_work_in_progress([{"role": "assistant", "content": "Done."}]) is None

    def test_short_requests_are_not_tasks(self):
        assert extract_work_in_progress([{"role": "user", "content": "ok thanks"}]) is None

    def test_task_without_findings(self):
        messages = [{"role": "user", "content": "What is the capital of France, please?"}]
        assert extract_work_in_progress(messages) is None

    def test_payload_omits_empty_fields(self):
        wip = WorkInProgress(task="ship it", progress=["built image"], commands_run=["make"])
        payload = wip.to_payload("tester")

        assert payload["agent_id"] == "tester"
        assert payload["tags"] == ["compaction", "wip", "auto"]
        assert payload["content"] == "[COMPACTION WIP] Task: ship it | Progress: built image"
        assert payload["commands_run"] == ["make"]
        assert "decisions" not in payload


class TestMemoryQuery:
    def test_uses_last_ten_string_messages(self):
        messages = [{"role": "user", "content": f"m{i}"} for i in range(12)]
        messages.append({"role": "user", "content": [{"type": "text", "text": "blocks"}]})
        query = extract_memory_query(messages)
        assert query == " ".join(f"m{i}" for i in range(3, 12))


class TestResolveAgentId:
    def test_configured_wins(self, monkeypatch):
        monkeypatch.setenv("SWARM_AGENT_ID", "from-env")
        assert resolve_agent_id("configured") == "configured"

    def test_env(self, monkeypatch):
        monkeypatch.setenv("SWARM_AGENT_ID", "from-env")
        assert resolve_agent_id() == "from-env"

    def test_hostname(self, monkeypatch):
        monkeypatch.delenv("SWARM_AGENT_ID", raising=False)
        monkeypatch.setenv("HOSTNAME", "Alices-MacBook-Pro")
        assert resolve_agent_id() == "nix"

    def test_default(self, monkeypatch):
        monkeypatch.delenv("SWARM_AGENT_ID", raising=False)
        monkeypatch.setenv("HOSTNAME", "ci-runner-7")
        assert resolve_agent_id() == "damon"


# ── Processor ───────────────────────────────────────────────────────


class TestMemoryProcessor:
    @pytest.mark.asyncio
    async def test_disabled(self):
        service = FakeMemoryService()
        config = MemoryConfig(enabled=False)
        processor = MemoryProcessor(config, client=make_client(service))

        assert await processor.process(DEPLOY_CONVERSATION, ["a.py"]) == ""
        await processor.background.drain()
        assert service.requests == []

    @pytest.mark.asyncio
    async def test_stores_wip_and_returns_memories(self):
        service = FakeMemoryService({
            "/memory/query": {
                "results": [{"content": "staging DB is 10.0.0.5", "created_at": "2026-02-01T00:00:00Z"}]
            }
        })
        config = MemoryConfig(enabled=True, agent_id="tester")
        processor = MemoryProcessor(config, client=make_client(service, enabled=True))

        section = await processor.process(DEPLOY_CONVERSATION, ["deploy/billing.yaml"])
        await processor.background.drain()

        assert section == (
            "\n\n<retrieved-memories>\n- (2026-02-01) staging DB is 10.0.0.5\n</retrieved-memories>"
        )
        stored = service.bodies("/memory/store")
        assert len(stored) == 1
        assert stored[0]["agent_id"] == "tester"
        assert stored[0]["tags"] == ["compaction", "wip", "auto"]
        assert stored[0]["files_modified"] == ["deploy/billing.yaml"]

    @pytest.mark.asyncio
    async def test_query_failure_returns_empty(self):
        config = MemoryConfig(enabled=True, agent_id="tester")
        processor = MemoryProcessor(config, client=make_client(FakeMemoryService(status_code=503)))
        assert await processor.process(DEPLOY_CONVERSATION) == ""
        await processor.background.drain()

    @pytest.mark.asyncio
    async def test_cancelled_skips_query(self):
        service = FakeMemoryService({"/memory/query": {"results": [{"content": "unused"}]}})
        config = MemoryConfig(enabled=True, agent_id="tester")
        processor = MemoryProcessor(config, client=make_client(service))
        cancelled = asyncio.Event()
        cancelled.set()

        section = await processor.process(DEPLOY_CONVERSATION, cancel_event=cancelled)
        await processor.background.drain()

        assert section == ""
        assert service.bodies("/memory/query") == []
        assert len(service.bodies("/memory/store")) == 1

    @pytest.mark.asyncio
    async def test_store_summary(self):
        service = FakeMemoryService()
        config = MemoryConfig(enabled=True, agent_id="tester")
        processor = MemoryProcessor(config, client=make_client(service))

        processor.store_summary("- deployed billing")
        await processor.background.drain()

        body = service.bodies("/memory/store")[0]
        assert body["content"] == "[COMPACTION SUMMARY] - deployed billing"


class TestBackgroundTasks:
    @pytest.mark.asyncio
    async def test_timeout_is_contained(self):
        background = BackgroundTasks()
        background.spawn(asyncio.sleep(10), name="slow", timeout=0.05)
        assert background.pending == 1

        await asyncio.wait_for(background.drain(), timeout=2)
        await asyncio.sleep(0)
        assert background.pending == 0

    @pytest.mark.asyncio
    async def test_errors_are_contained(self):
        async def explode():
            raise RuntimeError("boom")

        background = BackgroundTasks()
        task = background.spawn(explode(), name="explode", timeout=1)
        await background.drain()
        assert task.exception() is None


# ── Continuous extraction ───────────────────────────────────────────


class TestMemoryExtractor:
    def make_extractor(self, service, **config):
        config.setdefault("enabled", True)
        config.setdefault("agent_id", "tester")
        memory_config = MemoryConfig(**config)
        return MemoryExtractor(memory_config, client=make_client(service))

    @pytest.mark.asyncio
    async def test_extracts_every_n_turns(self):
        service = FakeMemoryService({"/extract": {"stored": True, "memory_id": "m-9"}})
        extractor = self.make_extractor(service)
        state = extractor.new_state()

        extractor.on_input(state, "please deploy the app")
        assert not extractor.on_turn_end(state, {"role": "assistant", "content": "Deploying now."})
        extractor.on_input(state, "and check the logs afterwards")
        assert extractor.on_turn_end(state, {"role": "assistant", "content": "Logs look clean."})

        await extractor.background.drain()
        body = service.bodies("/extract")[0]
        assert body["agent_id"] == "tester"
        assert "Human: please deploy the app" in body["conversation"]
        assert "Assistant: Logs look clean." in body["conversation"]
        assert state.extracting is False

        results = [
            extractor.on_turn_end(state, {"role": "assistant", "content": f"turn {n}"})
            for n in (3, 4, 5)
        ]
        assert results == [False, False, True]
        await extractor.background.drain()

    @pytest.mark.asyncio
    async def test_sessions_are_independent(self):
        service = FakeMemoryService()
        extractor = self.make_extractor(service)
        busy = extractor.new_state()
        fresh = extractor.new_state()

        for text in ("one", "two"):
            extractor.on_input(busy, f"message {text} from the user")
            extractor.on_turn_end(busy, {"role": "assistant", "content": f"reply {text}"})

        assert busy.turn_count == 2
        assert fresh.turn_count == 0
        assert not extractor.on_turn_end(fresh, {"role": "assistant", "content": "hello"})
        await extractor.background.drain()

    @pytest.mark.asyncio
    async def test_disabled_extraction(self):
        service = FakeMemoryService()
        extractor = self.make_extractor(service, extract_enabled=False)
        state = extractor.new_state()

        for _ in range(4):
            extractor.on_input(state, "a message long enough to keep")
            assert not extractor.on_turn_end(state, {"role": "assistant", "content": "reply"})
        assert service.requests == []

    def test_short_inputs_ignored(self):
        extractor = self.make_extractor(FakeMemoryService())
        state = extractor.new_state()
        extractor.on_input(state, "ok")
        assert len(state.buffer) == 0


class TestSessionMemoryState:
    def test_buffer_is_bounded(self):
        state = SessionMemoryState(max_messages=3)
        for i in range(5):
            state.record("Human", f"message {i}")
        assert [m.text for m in state.buffer] == ["message 2", "message 3", "message 4"]

    def test_transcript_truncates(self):
        state = SessionMemoryState()
        state.record("Human", "x" * 1000)
        assert state.transcript(max_chars=10) == "Human: " + "x" * 10
