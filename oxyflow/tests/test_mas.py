"""
Tests for oxyflow.mas module.

Covers registration, initialization order and master selection, the
agent organization tree, the chat entry point (close signal, shared
data, cancellation, restart and group resolution), batch processing,
message delivery and shutdown.
"""

import asyncio
import json
import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import yaml

from oxyflow.core.exceptions import ConfigurationError
from oxyflow.mas import LOG_FORMAT, Mas, configure_logging
from oxyflow.oxy.agents import LocalAgent, ReActAgent, WorkflowAgent
from oxyflow.oxy.flows import Workflow
from oxyflow.oxy.llms import FunctionLLM
from oxyflow.oxy.tools import FunctionTool
from oxyflow.schemas.state import OxyState


def add(a: int, b: int) -> int:
    return a + b


async def drain_queue(mas, key):
    messages = []
    while True:
        message = await mas.queue.pop(key)
        if message is None:
            return messages
        messages.append(message)


# ---------------------------------------------------------------------------
# Registry and init
# ---------------------------------------------------------------------------


class TestRegistry:
    """Test component registration and initialization."""

    def test_duplicate_name(self, mas):
        mas.add_oxy(FunctionTool("calc", add))
        with pytest.raises(ConfigurationError, match=r"Oxy \[calc\] already exists"):
            mas.add_oxy(FunctionTool("calc", add))

    def test_components_follow_host_config(self, mas):
        mas.config.execution.retries = 5
        tool = FunctionTool("calc", add)
        explicit = FunctionTool("explicit", add, retries=2)

        mas.add_oxy_list([tool, explicit])

        assert tool.retries == 5
        assert tool.delay == 0
        assert explicit.retries == 2

    def test_name_defaults_to_app(self, config):
        assert Mas(config=config).name == "test_app"

    def test_invalid_config_rejected(self, config):
        config.execution.retries = 0
        with pytest.raises(ConfigurationError):
            Mas(config=config)

    def test_from_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"default": {"app": {"name": "from-yaml"}}}))

        mas = Mas.from_file(path)

        assert mas.name == "from-yaml"
        assert "from-yaml" in repr(mas)

    @pytest.mark.asyncio
    async def test_master_defaults_to_first_agent(self, mas, make_llm):
        mas.add_oxy_list([make_llm(), LocalAgent("first"), LocalAgent("second")])
        await mas.init()
        assert mas.master_agent_name == "first"

    @pytest.mark.asyncio
    async def test_master_flag(self, mas, make_llm):
        mas.add_oxy_list([make_llm(), LocalAgent("first"), LocalAgent("second", is_master=True)])
        await mas.init()
        assert mas.master_agent_name == "second"

    @pytest.mark.asyncio
    async def test_init_order_independent_of_registration(self, mas, make_llm):
        mas.add_oxy_list([
            LocalAgent("agent", tools=["calc"]),
            FunctionTool("calc", add),
            make_llm(),
        ])

        await mas.init()

        assert mas.is_initialized
        assert all(oxy.is_initialized for oxy in mas.oxy_name_to_oxy.values())

    @pytest.mark.asyncio
    async def test_organization(self, mas, make_llm):
        mas.add_oxy_list([
            make_llm(),
            FunctionTool("calc", add),
            LocalAgent("helper"),
            ReActAgent("master", sub_agents=["helper"], tools=["calc"], is_master=True),
        ])
        await mas.init()

        assert mas.get_agent_organization() == {
            "name": "master",
            "type": "agent",
            "children": [
                {"name": "helper", "type": "agent", "children": []},
                {"name": "calc", "type": "tool"},
            ],
        }

    @pytest.mark.asyncio
    async def test_organization_cycle(self, mas, make_llm):
        mas.add_oxy_list([
            make_llm(),
            LocalAgent("a", sub_agents=["b"], is_master=True),
            LocalAgent("b", sub_agents=["a"]),
        ])
        await mas.init()

        tree = mas.get_agent_organization()

        assert tree["children"][0]["name"] == "b"
        assert tree["children"][0]["children"] == [{"name": "a", "type": "agent"}]

    def test_organization_without_agents(self, mas):
        assert mas.get_agent_organization() == {}


# ---------------------------------------------------------------------------
# chat_with_agent
# ---------------------------------------------------------------------------


class TestChatWithAgent:
    """Test the main entry point."""

    @pytest.fixture
    def echo_agent(self, mas, make_llm):
        async def echo(oxy_request):
            return {
                "query": oxy_request.get_query(),
                "master_query": oxy_request.get_query(master_level=True),
                "group_id": oxy_request.group_id,
                "group_data": dict(oxy_request.group_data),
            }

        mas.add_oxy_list([make_llm(), WorkflowAgent("echo", func_workflow=echo)])

    @pytest.mark.asyncio
    async def test_requires_query(self, mas):
        with pytest.raises(ValueError, match="Payload must contain the key 'query'."):
            await mas.chat_with_agent({"text": "hi"})

    @pytest.mark.asyncio
    async def test_shared_query(self, mas, echo_agent):
        response = await mas.chat_with_agent({"query": {"text": "hi"}})

        assert response.output["query"] == "{'text': 'hi'}"
        assert response.output["master_query"] == json.dumps({"text": "hi"})

    @pytest.mark.asyncio
    async def test_close_signal_last(self, mas, echo_agent):
        await mas.chat_with_agent({"query": "hi", "current_trace_id": "trace-1"})

        messages = await drain_queue(mas, "oxygent:test_mas:trace-1")

        assert messages[-1] == {"event": "close", "data": "done"}
        assert "trace-1" not in mas.active_tasks

    @pytest.mark.asyncio
    async def test_explicit_callee(self, mas, make_llm):
        mas.add_oxy_list([
            make_llm(["from master"]),
            LocalAgent("master", is_master=True),
            Workflow("side", func_workflow=lambda r: "from side"),
        ])

        default = await mas.chat_with_agent({"query": "hi"})
        side = await mas.chat_with_agent({"query": "hi", "callee": "side"})

        assert default.output == "from master"
        assert side.output == "from side"

    @pytest.mark.asyncio
    async def test_group_carried_over(self, mas, echo_agent):
        first = await mas.chat_with_agent(
            {"query": "one", "group_id": "g-1", "group_data": {"user": "ann"}}
        )
        await mas.drain()

        second = await mas.chat_with_agent(
            {"query": "two", "from_trace_id": first.oxy_request.current_trace_id}
        )

        assert second.output["group_id"] == "g-1"
        assert second.output["group_data"] == {"user": "ann"}

    @pytest.mark.asyncio
    async def test_break_task_cancels(self, mas, make_llm):
        async def stop(oxy_request):
            await oxy_request.break_task()
            await asyncio.sleep(10)

        mas.add_oxy_list([make_llm(), WorkflowAgent("stopper", func_workflow=stop)])

        response = await mas.chat_with_agent({"query": "stop", "current_trace_id": "t-stop"})

        assert response.state is OxyState.CANCELED
        messages = await drain_queue(mas, "oxygent:test_mas:t-stop")
        assert messages.count({"event": "close", "data": "done"}) == 2

    @pytest.mark.asyncio
    async def test_outer_cancellation(self, mas, make_llm):
        started = asyncio.Event()

        async def slow(oxy_request):
            started.set()
            await asyncio.sleep(10)

        mas.add_oxy_list([make_llm(), WorkflowAgent("slow", func_workflow=slow)])
        task = asyncio.create_task(mas.chat_with_agent({"query": "wait"}))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert mas.active_tasks == {}

    @pytest.mark.asyncio
    async def test_restart_from_node(self, mas, make_llm):
        llm = make_llm([json.dumps({"tool_name": "calc", "arguments": {"a": 2, "b": 3}}), "It is 5"])
        mas.add_oxy_list([llm, FunctionTool("calc", add), ReActAgent("master", tools=["calc"])])

        first = await mas.chat_with_agent({"query": "2 + 3?"})
        await mas.drain()
        trace_id = first.oxy_request.current_trace_id
        llm_nodes = await mas.store.search("test_app_node", {
            "query": {"bool": {"must": [
                {"term": {"trace_id": trace_id}},
                {"term": {"callee": "default_llm"}},
            ]}},
            "sort": [{"create_time": {"order": "asc"}}],
        })
        answer_node = llm_nodes["hits"]["hits"][1]["_id"]

        second = await mas.chat_with_agent({
            "query": "2 + 3?",
            "restart_node_id": answer_node,
            "restart_node_output": "Edited: five",
        })

        assert second.output == "Edited: five"
        assert second.oxy_request.reference_trace_id == trace_id
        assert len(llm.backend.calls) == 2

    @pytest.mark.asyncio
    async def test_restart_unknown_node(self, mas, echo_agent, caplog):
        with caplog.at_level(logging.WARNING):
            response = await mas.chat_with_agent({"query": "hi", "restart_node_id": "missing"})

        assert response.state is OxyState.COMPLETED
        assert "Restart node missing not found" in caplog.text


# ---------------------------------------------------------------------------
# call and batch processing
# ---------------------------------------------------------------------------


class TestCallAndBatch:
    """Test direct calls and concurrent batches."""

    @pytest.fixture
    def llm(self, mas):
        async def echo_last(messages):
            return f"echo: {messages[-1]['content']}"

        mas.add_oxy_list([FunctionLLM("default_llm", echo_last), LocalAgent("agent")])

    @pytest.mark.asyncio
    async def test_call_unknown_field(self, mas, llm):
        with pytest.raises(ValueError, match="Unknown OxyRequest field"):
            await mas.call("agent", {"query": "x"}, colour="red")

    @pytest.mark.asyncio
    async def test_batch(self, mas, llm):
        results = await mas.start_batch_processing(["one", "two", "three"])
        assert results == ["echo: one", "echo: two", "echo: three"]

    @pytest.mark.asyncio
    async def test_batch_with_trace_ids(self, mas, llm):
        results = await mas.start_batch_processing(["one", "two"], return_trace_id=True)

        assert [r["output"] for r in results] == ["echo: one", "echo: two"]
        assert results[0]["trace_id"] != results[1]["trace_id"]

    @pytest.mark.asyncio
    async def test_batch_errors_reported(self, mas, llm):
        with patch.object(mas, "chat_with_agent", AsyncMock(side_effect=RuntimeError("down"))):
            results = await mas.start_batch_processing(["one"])
            detailed = await mas.start_batch_processing(["one"], return_trace_id=True)

        assert results == ["Error: down"]
        assert detailed == [{"output": "Error: down", "trace_id": ""}]


# ---------------------------------------------------------------------------
# Messages and shutdown
# ---------------------------------------------------------------------------


class TestMessagesAndShutdown:
    """Test message delivery and closing the host."""

    @pytest.mark.asyncio
    async def test_queue_failure_logged(self, config, caplog):
        queue = MagicMock()
        queue.push = AsyncMock(side_effect=ConnectionError("queue unreachable"))
        mas = Mas("test_mas", config=config, queue=queue)

        with caplog.at_level(logging.WARNING):
            await mas.send_message({"type": "answer"}, "key")

        assert "NETWORK error in test_mas during send_message" in caplog.text

    @pytest.mark.asyncio
    async def test_show_in_terminal(self, mas, caplog):
        mas.config.message.show_in_terminal = True
        with caplog.at_level(logging.INFO, logger="oxyflow.mas"):
            await mas.send_message({"type": "answer", "content": "hi"}, "k")
        assert '[k] {"type": "answer", "content": "hi"}' in caplog.text

    @pytest.mark.asyncio
    async def test_create_task_drained(self, mas):
        done = []

        async def work():
            await asyncio.sleep(0.01)
            done.append(True)

        mas.create_task(work(), name="work")
        assert await mas.drain() == 1
        assert done == [True]

    @pytest.mark.asyncio
    async def test_context_manager_closes(self, config, make_llm):
        store = MagicMock()
        store.close = AsyncMock()
        store.search = AsyncMock(return_value={"hits": {"hits": []}})
        store.index = AsyncMock()
        store.update = AsyncMock()

        async with Mas("test_mas", config=config, store=store,
                       oxy_space=[make_llm(), LocalAgent("agent")]) as mas:
            assert mas.is_initialized
            await mas.chat_with_agent({"query": "hi"})

        store.close.assert_awaited_once()
        assert store.index.await_count >= 1


def test_configure_logging():
    with patch("oxyflow.mas.logging.basicConfig") as basic_config:
        configure_logging("debug")
        configure_logging("bogus")

    assert basic_config.call_args_list[0].kwargs == {"level": logging.DEBUG, "format": LOG_FORMAT}
    assert basic_config.call_args_list[1].kwargs["level"] == logging.INFO
