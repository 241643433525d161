"""
Tests for oxyflow.oxy.agents.parallel_agent module.
"""

import pytest

from oxyflow.oxy.agents import LocalAgent, ParallelAgent
from oxyflow.oxy.tools import FunctionTool
from oxyflow.schemas.state import OxyState


class TestParallelAgent:
    """Test fan-out to all callees and the summary call."""

    @pytest.fixture
    def seen(self):
        return []

    @pytest.fixture
    def llm(self, mas, make_llm, seen):
        def expert(name):
            def answer(query: str, oxy_request):
                seen.append(oxy_request)
                return f"{name} says {query}"
            return answer

        llm = make_llm(["Summary"])
        mas.add_oxy_list([
            llm,
            FunctionTool("finance", expert("finance")),
            FunctionTool("legal", expert("legal")),
            ParallelAgent("panel", tools=["finance", "legal"], is_master=True),
        ])
        return llm

    @pytest.mark.asyncio
    async def test_fan_out_and_summarize(self, mas, llm, seen):
        response = await mas.chat_with_agent({"query": "merge?"})

        assert response.state is OxyState.COMPLETED
        assert response.output == "Summary"
        assert response.extra["parallel_results"] == ["finance says merge?", "legal says merge?"]

        system, user = llm.backend.calls[0]
        assert "the user's question is:merge?" in system["content"]
        assert user["content"] == (
            "The parallel results are as following:\n"
            "1. finance says merge?\n"
            "2. legal says merge?\n"
        )

    @pytest.mark.asyncio
    async def test_shared_parallel_group(self, mas, llm, seen):
        await mas.chat_with_agent({"query": "merge?"})

        assert len(seen) == 2
        assert seen[0].parallel_id == seen[1].parallel_id
        assert seen[0].pre_node_ids == seen[1].pre_node_ids

    @pytest.mark.asyncio
    async def test_agent_only_arguments_not_forwarded(self, mas, llm, seen):
        await mas.chat_with_agent({"query": "merge?", "topic": "m&a"})

        arguments = seen[0].arguments
        assert arguments["topic"] == "m&a"
        assert "short_memory" not in arguments
        assert "tools_description" not in arguments
        assert "first_query_struct" not in arguments

    @pytest.mark.asyncio
    async def test_sub_agents_keep_their_own_memory(self, mas, make_llm):
        llm = make_llm(["partial", "Summary"])
        mas.add_oxy_list([
            llm,
            LocalAgent("analyst"),
            ParallelAgent("panel", sub_agents=["analyst"], is_master=True),
        ])

        response = await mas.chat_with_agent({"query": "merge?"})

        assert response.output == "Summary"
        assert llm.backend.calls[0] == [{"role": "user", "content": "merge?"}]
