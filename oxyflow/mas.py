"""
Mas: the host that owns the component registry and runs requests.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .core.config import OxyflowConfig
from .core.error_handler import ErrorHandler
from .core.events import ChainedEventProcessor
from .core.exceptions import ConfigurationError
from .core.tasks import BackgroundTaskRegistry
from .infra.base import MessageQueue, NodeStore
from .infra.local_queue import LocalQueue
from .infra.local_store import LocalStore
from .oxy.agents.base_agent import BaseAgent
from .oxy.base_oxy import BaseOxy
from .oxy.flows import BaseFlow
from .oxy.llms import BaseLLM
from .oxy.tools import FunctionHub
from .schemas.request import FIRST_QUERY_STRUCT, OxyRequest
from .schemas.response import OxyResponse
from .schemas.state import OxyState
from .utils.identifiers import generate_id

logger = logging.getLogger(__name__)

_REQUEST_FIELDS = set(OxyRequest.__dataclass_fields__) - {"mas"}

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with the oxyflow format."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


class Mas:
    """
    Multi-agent system host.

    Holds the components by name, the store and message queue, and the
    background work spawned by executions. Requests enter through
    ``chat_with_agent`` or ``call``.

    Example:
        ```python
        async with Mas("demo", oxy_space=[llm, tool, agent]) as mas:
            response = await mas.chat_with_agent({"query": "What time is it?"})
        ```
    """

    def __init__(
        self,
        name: str = "",
        oxy_space: Optional[List[Union[BaseOxy, FunctionHub]]] = None,
        config: Optional[OxyflowConfig] = None,
        store: Optional[NodeStore] = None,
        queue: Optional[MessageQueue] = None,
        error_handler: Optional[ErrorHandler] = None,
    ):
        """
        Args:
            name: Host name, part of every message queue key
            oxy_space: Components (or function hubs) to register
            config: Configuration; defaults are used when omitted
            store: Node store; an in-memory LocalStore when omitted
            queue: Message queue; an in-memory LocalQueue when omitted
            error_handler: Shared error handler for all components
        """
        self.config = config or OxyflowConfig()
        self.config.validate()
        self.name = name or self.config.app_name
        self.store = store if store is not None else LocalStore()
        self.queue = queue if queue is not None else LocalQueue()
        self.error_handler = error_handler or ErrorHandler()

        self.task_registry = BackgroundTaskRegistry()
        self.event_processor = ChainedEventProcessor(
            self.task_registry, wait_timeout=self.config.execution.event_wait_timeout
        )

        self.oxy_name_to_oxy: Dict[str, BaseOxy] = {}
        self.function_hubs: Dict[str, FunctionHub] = {}
        self.master_agent_name = ""
        self.active_tasks: Dict[str, asyncio.Task] = {}
        self.global_data: Dict[str, Any] = {}
        self.is_initialized = False

        if oxy_space:
            self.add_oxy_list(oxy_space)

    def __repr__(self) -> str:
        return (f"Mas(name='{self.name}', oxys={len(self.oxy_name_to_oxy)}, "
                f"master='{self.master_agent_name}', initialized={self.is_initialized})")

    @classmethod
    def from_file(
        cls,
        file_path: Union[str, Path],
        env: str = "default",
        **kwargs: Any
    ) -> "Mas":
        """Create a host from a YAML configuration file."""
        return cls(config=OxyflowConfig.from_yaml(file_path, env), **kwargs)

    @property
    def message_prefix(self) -> str:
        return self.config.message.message_prefix

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def add_oxy(self, oxy: Union[BaseOxy, FunctionHub]) -> None:
        """
        Register a component, or every tool of a function hub.

        Raises:
            ConfigurationError: If the name is already registered
        """
        if isinstance(oxy, FunctionHub):
            if oxy.name in self.function_hubs:
                raise ConfigurationError(f"Function hub [{oxy.name}] already exists")
            self.function_hubs[oxy.name] = oxy
            self.add_oxy_list(oxy.to_oxy_list())
            return

        if oxy.name in self.oxy_name_to_oxy:
            raise ConfigurationError(f"Oxy [{oxy.name}] already exists")
        oxy.set_mas(self)
        self.oxy_name_to_oxy[oxy.name] = oxy
        logger.debug(f"Registered {oxy!r}")

    def add_oxy_list(self, oxy_list: List[Union[BaseOxy, FunctionHub]]) -> None:
        for oxy in oxy_list:
            self.add_oxy(oxy)

    def get_oxy(self, name: str) -> Optional[BaseOxy]:
        return self.oxy_name_to_oxy.get(name)

    def is_agent(self, name: str) -> bool:
        oxy = self.oxy_name_to_oxy.get(name)
        return oxy is not None and oxy.category == "agent"

    async def init(self) -> None:
        """
        Initialize every component and pick the master agent.

        LLMs come first, then tools, flows and agents, so agents can check
        their references against initialized components.

        Raises:
            ConfigurationError: If a component references something missing
        """
        if self.is_initialized:
            return
        logger.info(f"Initializing Mas: {self.name}")

        def init_rank(oxy: BaseOxy) -> int:
            if isinstance(oxy, BaseLLM):
                return 0
            if isinstance(oxy, BaseAgent):
                return 3
            if isinstance(oxy, BaseFlow):
                return 2
            return 1

        for oxy in sorted(self.oxy_name_to_oxy.values(), key=init_rank):
            await oxy.init()

        self._init_master_agent_name()
        self.is_initialized = True
        logger.info(
            f"Mas {self.name} initialized with {len(self.oxy_name_to_oxy)} components, "
            f"master agent: {self.master_agent_name or 'none'}"
        )

    def _init_master_agent_name(self) -> None:
        agents = [oxy for oxy in self.oxy_name_to_oxy.values() if isinstance(oxy, BaseAgent)]
        masters = [agent for agent in agents if agent.is_master]
        if masters:
            self.master_agent_name = masters[0].name
        elif agents:
            self.master_agent_name = agents[0].name

    def get_agent_organization(self) -> Dict[str, Any]:
        """Tree of the master agent and, recursively, the components each agent may call."""
        if not self.master_agent_name:
            return {}
        return self._organization_node(self.master_agent_name, [])

    def _organization_node(self, name: str, path: List[str]) -> Dict[str, Any]:
        oxy = self.oxy_name_to_oxy[name]
        node: Dict[str, Any] = {"name": name, "type": oxy.category}
        if self.is_agent(name) and name not in path:
            node["children"] = [
                self._organization_node(child, path + [name])
                for child in oxy.permitted_tool_name_list
                if child in self.oxy_name_to_oxy
            ]
        return node

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def send_message(self, message: Dict[str, Any], key: str) -> None:
        """Deliver a notification; failures are logged and swallowed."""
        try:
            if self.config.message.show_in_terminal:
                logger.info(f"[{key}] {json.dumps(message, ensure_ascii=False, default=str)}")
            if self.config.message.is_stored and self.queue is not None and key:
                await self.queue.push(key, message)
        except Exception as e:
            self.error_handler.handle_error(e, operation="send_message", component=self.name)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def _resolve_restart(self, payload: Dict[str, Any]) -> None:
        restart_node_id = payload.get("restart_node_id")
        if not restart_node_id:
            return
        result = await self.store.search(
            f"{self.config.app_name}_node",
            {"query": {"term": {"_id": restart_node_id}}, "size": 1},
        )
        hits = (result or {}).get("hits", {}).get("hits", [])
        if not hits:
            logger.warning(f"Restart node {restart_node_id} not found")
            return

        source = hits[0].get("_source") or {}
        if payload.get("reference_trace_id"):
            if source.get("trace_id") == payload["reference_trace_id"]:
                payload["restart_node_order"] = source.get("update_time")
        else:
            payload["restart_node_order"] = source.get("update_time")
            payload["reference_trace_id"] = source.get("trace_id")
            logger.info(f"Found restart node {restart_node_id}, using trace {source.get('trace_id')}")

    async def _resolve_group(self, payload: Dict[str, Any]) -> None:
        from_trace_id = payload.get("from_trace_id")
        if not from_trace_id or payload.get("group_id"):
            return
        result = await self.store.search(
            f"{self.config.app_name}_trace",
            {"query": {"term": {"_id": from_trace_id}}, "size": 1},
        )
        hits = (result or {}).get("hits", {}).get("hits", [])
        if not hits:
            return
        source = hits[0].get("_source") or {}
        payload["group_id"] = source.get("group_id", "")
        if "group_data" not in payload:
            group_data = source.get("group_data") or {}
            if isinstance(group_data, str):
                try:
                    group_data = json.loads(group_data)
                except json.JSONDecodeError as e:
                    logger.warning(f"Ignoring unreadable group data of trace {from_trace_id}: {e}")
                    group_data = {}
            payload["group_data"] = group_data

    def _build_request(self, payload: Dict[str, Any]) -> OxyRequest:
        oxy_request = OxyRequest(mas=self)
        for key, value in payload.items():
            if key in _REQUEST_FIELDS:
                setattr(oxy_request, key, value)
            else:
                oxy_request.arguments[key] = value
        if not oxy_request.callee:
            oxy_request.callee = self.master_agent_name
        return oxy_request

    async def chat_with_agent(self, payload: Dict[str, Any]) -> OxyResponse:
        """
        Run one user request.

        Keys of ``payload`` naming request fields (``callee``,
        ``from_trace_id``, ``current_trace_id``, ``restart_node_id``, ...) set
        those fields; every other key becomes an argument. Without a callee
        the master agent answers.

        Raises:
            ValueError: If the payload has no ``query``
        """
        if "query" not in payload:
            raise ValueError("Payload must contain the key 'query'.")
        if not self.is_initialized:
            await self.init()

        payload = dict(payload)
        query = payload["query"]
        shared_data = dict(payload.get("shared_data") or {})
        shared_data["query"] = query if isinstance(query, str) else json.dumps(query, ensure_ascii=False)
        payload["shared_data"] = shared_data
        payload.setdefault(FIRST_QUERY_STRUCT, query)
        payload.setdefault("current_trace_id", generate_id())

        await self._resolve_restart(payload)
        await self._resolve_group(payload)

        oxy_request = self._build_request(payload)
        trace_id = oxy_request.current_trace_id
        task = asyncio.create_task(oxy_request.start(), name=f"trace:{trace_id}")
        self.active_tasks[trace_id] = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            self.active_tasks.pop(trace_id, None)
            await oxy_request.send_message({"event": "close", "data": "done"})

        if task.cancelled():
            logger.info(f"Trace {trace_id} was cancelled")
            return OxyResponse(
                state=OxyState.CANCELED, output="Request was cancelled", oxy_request=oxy_request
            )
        return task.result()

    async def call(self, callee: str, arguments: Dict[str, Any], **kwargs: Any) -> OxyResponse:
        """Invoke one component directly as the user."""
        if not self.is_initialized:
            await self.init()
        oxy_request = OxyRequest(mas=self, callee=callee, arguments=dict(arguments))
        for key, value in kwargs.items():
            if key not in _REQUEST_FIELDS:
                raise ValueError(f"Unknown OxyRequest field: {key}")
            setattr(oxy_request, key, value)
        return await oxy_request.start()

    async def start_batch_processing(
        self,
        queries: List[str],
        return_trace_id: bool = False
    ) -> List[Any]:
        """
        Run independent queries concurrently against the master agent.

        Returns:
            One output per query, or ``{"output", "trace_id"}`` dicts when
            ``return_trace_id`` is set. Failures are reported as ``Error: ...``.
        """
        logger.info(f"Starting batch processing of {len(queries)} queries")

        async def run(query: str) -> Any:
            try:
                oxy_response = await self.chat_with_agent({"query": query})
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Query processing failed: {query}: {e}")
                if return_trace_id:
                    return {"output": f"Error: {e}", "trace_id": ""}
                return f"Error: {e}"
            if return_trace_id:
                trace_id = oxy_response.oxy_request.current_trace_id if oxy_response.oxy_request else ""
                return {"output": oxy_response.output, "trace_id": trace_id}
            return oxy_response.output

        results = await asyncio.gather(*(run(query) for query in queries))
        logger.info(f"Batch processing completed. Total queries: {len(queries)}")
        return list(results)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def create_task(self, coro: Any, name: Optional[str] = None) -> asyncio.Task:
        """Schedule background work that ``drain`` will wait for."""
        return self.task_registry.create_task(coro, name=name)

    async def drain(self, timeout: Optional[float] = None) -> int:
        """Wait for pending persistence and other background work."""
        return await self.task_registry.drain(timeout)

    async def close(self, timeout: Optional[float] = None) -> None:
        """Drain background work and close the store and queue."""
        for task in list(self.active_tasks.values()):
            task.cancel()
        await self.drain(timeout)
        if self.store is not None:
            await self.store.close()
        if self.queue is not None:
            await self.queue.close()
        logger.info(f"Mas {self.name} closed")

    async def __aenter__(self) -> "Mas":
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
