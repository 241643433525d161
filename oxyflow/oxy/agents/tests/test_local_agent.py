"""
Tests for oxyflow.oxy.agents.local_agent and base_agent modules.

Covers reference checks at init, permitted tool resolution, the
instruction, trace records and history across conversation turns.
"""

import json

import pytest

from oxyflow.core.exceptions import ConfigurationError
from oxyflow.oxy.agents import LocalAgent
from oxyflow.oxy.agents.base_agent import load_history_memory
from oxyflow.oxy.llms import FunctionLLM
from oxyflow.oxy.tools import FunctionHub, FunctionTool
from oxyflow.schemas.request import OxyRequest
from oxyflow.schemas.state import OxyState


def add(a: int, b: int) -> int:
    return a + b


# ---------------------------------------------------------------------------
# Init
# ---------------------------------------------------------------------------


class TestInit:
    """Test reference resolution at init."""

    @pytest.mark.asyncio
    async def test_missing_llm(self, mas):
        mas.add_oxy(LocalAgent("agent"))
        with pytest.raises(ConfigurationError, match=r"LLM model \[default_llm\] does not exist"):
            await mas.init()

    @pytest.mark.asyncio
    async def test_no_llm_configured(self, mas):
        mas.config.agent.llm_model = ""
        mas.add_oxy(LocalAgent("agent"))
        with pytest.raises(ConfigurationError, match="has not set an LLM model"):
            await mas.init()

    @pytest.mark.asyncio
    async def test_missing_sub_agent(self, mas, make_llm):
        mas.add_oxy_list([make_llm(), LocalAgent("agent", sub_agents=["ghost"])])
        with pytest.raises(ConfigurationError, match=r"Agent \[ghost\] does not exist"):
            await mas.init()

    @pytest.mark.asyncio
    async def test_missing_tool(self, mas, make_llm):
        mas.add_oxy_list([make_llm(), LocalAgent("agent", tools=["ghost"])])
        with pytest.raises(ConfigurationError, match=r"Tool \[ghost\] does not exist"):
            await mas.init()

    @pytest.mark.asyncio
    async def test_agent_listed_as_tool(self, mas, make_llm):
        mas.add_oxy_list([
            make_llm(),
            LocalAgent("helper"),
            LocalAgent("agent", tools=["helper"]),
        ])
        with pytest.raises(ConfigurationError, match=r"\[helper\] is not a tool"):
            await mas.init()

    @pytest.mark.asyncio
    async def test_invalid_short_memory_size(self, mas, make_llm):
        mas.add_oxy_list([make_llm(), LocalAgent("agent", short_memory_size=0)])
        with pytest.raises(ConfigurationError):
            await mas.init()

    @pytest.mark.asyncio
    async def test_defaults_from_config(self, mas, make_llm):
        mas.config.agent.short_memory_size = 4
        agent = LocalAgent("agent")
        mas.add_oxy_list([make_llm(), agent])

        await mas.init()

        assert agent.llm_model == "default_llm"
        assert agent.short_memory_size == 4
        assert agent.prompt == ""
        assert agent.is_permission_required is True

    @pytest.mark.asyncio
    async def test_permitted_tools(self, mas, make_llm):
        hub = FunctionHub("math_tools")
        hub.register_tool(add, "Add", name="add")
        hub.register_tool(add, "Plus", name="plus")
        agent = LocalAgent(
            "agent",
            sub_agents=["helper"],
            tools=["math_tools", "calc", "skip_me"],
            except_tools=["plus", "skip_me"],
        )
        mas.add_oxy_list([
            make_llm(),
            hub,
            FunctionTool("calc", add),
            LocalAgent("helper"),
            agent,
        ])

        await mas.init()

        assert agent.permitted_tool_name_list == ["helper", "add", "calc"]
        assert agent.can_call("calc")
        assert not agent.can_call("plus")


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class TestExecute:
    """Test the single-call answer."""

    @pytest.mark.asyncio
    async def test_instruction_and_query(self, mas, make_llm):
        llm = make_llm(["Bonjour"])
        mas.add_oxy_list([
            llm,
            FunctionTool("calc", add, desc="Add numbers"),
            LocalAgent(
                "agent",
                prompt="Be brief. ${additional_prompt}\n${tools_description}",
                additional_prompt="Answer in French.",
                tools=["calc"],
            ),
        ])

        response = await mas.chat_with_agent({"query": "Hello"})

        assert response.state is OxyState.COMPLETED
        assert response.output == "Bonjour"
        system, user = llm.backend.calls[0]
        assert system["role"] == "system"
        assert system["content"].startswith("Be brief. Answer in French.\nTool: calc")
        assert user == {"role": "user", "content": "Hello"}

    @pytest.mark.asyncio
    async def test_no_system_message_without_prompt(self, mas, make_llm):
        llm = make_llm(["hi"])
        mas.add_oxy_list([llm, LocalAgent("agent")])

        await mas.chat_with_agent({"query": "Hello"})

        assert llm.backend.calls[0] == [{"role": "user", "content": "Hello"}]

    @pytest.mark.asyncio
    async def test_llm_failure_propagates_state(self, mas, make_llm):
        def broken(messages):
            raise RuntimeError("down")

        mas.add_oxy_list([FunctionLLM("default_llm", broken, retries=1), LocalAgent("agent")])

        response = await mas.chat_with_agent({"query": "Hello"})

        assert response.state is OxyState.FAILED

    @pytest.mark.asyncio
    async def test_tools_description_sorted(self, mas, make_llm):
        agent = LocalAgent("agent", tools=["zeta", "alpha"])
        mas.add_oxy_list([
            make_llm(),
            FunctionTool("zeta", add, desc="Z"),
            FunctionTool("alpha", add, desc="A"),
            agent,
        ])
        await mas.init()

        description = agent.get_tools_description(OxyRequest(mas=mas))

        assert description.index("Tool: alpha") < description.index("Tool: zeta")
        assert "\n\n" in description


# ---------------------------------------------------------------------------
# Traces and history
# ---------------------------------------------------------------------------


class TestConversation:
    """Test trace records and history reload across turns."""

    @pytest.fixture
    def llm(self, mas, make_llm):
        llm = make_llm(["a1", "a2", "a3"])
        mas.add_oxy_list([llm, LocalAgent("agent")])
        return llm

    @pytest.mark.asyncio
    async def test_trace_record(self, mas, llm):
        response = await mas.chat_with_agent({"query": "q1", "request_id": "req-1"})
        await mas.drain()

        trace_id = response.oxy_request.current_trace_id
        doc = await mas.store.get("test_app_trace", trace_id)
        assert doc["request_id"] == "req-1"
        assert doc["callee"] == "agent"
        assert doc["output"] == "a1"
        assert doc["state"] == "completed"
        assert doc["root_trace_ids"] == []

    @pytest.mark.asyncio
    async def test_history_record(self, mas, llm):
        response = await mas.chat_with_agent({"query": "q1"})
        await mas.drain()

        trace_id = response.oxy_request.current_trace_id
        doc = await mas.store.get("test_app_history", f"{trace_id}__user__agent")
        assert doc["session_name"] == "user__agent"
        assert doc["trace_id"] == trace_id
        assert doc["memory"] == {"query": "q1", "answer": "a1"}

    @pytest.mark.asyncio
    async def test_history_reloaded_on_next_turn(self, mas, llm):
        first = await mas.chat_with_agent({"query": "q1"})
        await mas.drain()
        first_trace = first.oxy_request.current_trace_id

        second = await mas.chat_with_agent({"query": "q2", "from_trace_id": first_trace})
        await mas.drain()

        assert second.output == "a2"
        assert llm.backend.calls[1] == [
            {"role": "user", "content": "q1"},
            {"role": "assistant", "content": "a1"},
            {"role": "user", "content": "q2"},
        ]
        second_trace = second.oxy_request.current_trace_id
        doc = await mas.store.get("test_app_trace", second_trace)
        assert doc["root_trace_ids"] == [first_trace]

    @pytest.mark.asyncio
    async def test_trace_chain_grows(self, mas, llm):
        first = await mas.chat_with_agent({"query": "q1"})
        await mas.drain()
        second = await mas.chat_with_agent(
            {"query": "q2", "from_trace_id": first.oxy_request.current_trace_id}
        )
        await mas.drain()
        third = await mas.chat_with_agent(
            {"query": "q3", "from_trace_id": second.oxy_request.current_trace_id}
        )

        assert third.oxy_request.root_trace_ids == [
            first.oxy_request.current_trace_id,
            second.oxy_request.current_trace_id,
        ]
        assert len(llm.backend.calls[2]) == 5

    @pytest.mark.asyncio
    async def test_history_size_limit(self, mas, llm):
        mas.get_oxy("agent").short_memory_size = 1
        first = await mas.chat_with_agent({"query": "q1"})
        await mas.drain()
        second = await mas.chat_with_agent(
            {"query": "q2", "from_trace_id": first.oxy_request.current_trace_id}
        )
        await mas.drain()
        await mas.chat_with_agent(
            {"query": "q3", "from_trace_id": second.oxy_request.current_trace_id}
        )

        assert llm.backend.calls[2] == [
            {"role": "user", "content": "q2"},
            {"role": "assistant", "content": "a2"},
            {"role": "user", "content": "q3"},
        ]

    @pytest.mark.asyncio
    async def test_failed_turn_not_saved(self, mas):
        def broken(messages):
            raise RuntimeError("down")

        mas.add_oxy_list([FunctionLLM("default_llm", broken, retries=1), LocalAgent("agent")])
        await mas.chat_with_agent({"query": "q1"})
        await mas.drain()

        result = await mas.store.search("test_app_history", {})
        assert result["hits"]["hits"] == []

    @pytest.mark.asyncio
    async def test_is_save_history_false(self, mas, llm):
        await mas.chat_with_agent({"query": "q1", "is_save_history": False})
        await mas.drain()

        result = await mas.store.search("test_app_history", {})
        assert result["hits"]["hits"] == []


class TestLoadHistoryMemory:
    """Test decoding of stored memory fields."""

    def test_dict(self):
        assert load_history_memory({"memory": {"query": "q"}}) == {"query": "q"}

    def test_json_string(self):
        assert load_history_memory({"memory": json.dumps({"answer": "a"})}) == {"answer": "a"}

    def test_unreadable(self, caplog):
        assert load_history_memory({"memory": "{broken"}) == {}
        assert "Skipping unreadable history memory" in caplog.text

    def test_missing(self):
        assert load_history_memory(None) == {}
