"""
Execution context that travels through the call graph.

One OxyRequest exists per hop. A component that calls another one derives
a child request with ``call``; the child is a copy, so a callee can never
mutate its caller's arguments or bookkeeping lists.
"""

import asyncio
import copy
import logging
from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..core.constants import USER_CALLER
from ..utils.identifiers import generate_id
from .message import Memory, Message
from .response import OxyResponse
from .state import OxyState

if TYPE_CHECKING:
    from ..mas import Mas
    from ..oxy.base_oxy import BaseOxy

logger = logging.getLogger(__name__)

# Only used to record how the user's first query was structured
FIRST_QUERY_STRUCT = "first_query_struct"

SHORT_MEMORY_KEY = "short_memory"
MASTER_SHORT_MEMORY_KEY = "master_short_memory"

_MERGED_MAPS = ("shared_data", "group_data")


@dataclass
class OxyRequest:
    """
    One hop of an execution.

    Identifiers:
        request_id, group_id: Client supplied correlation ids
        current_trace_id: Trace this hop belongs to
        from_trace_id: Trace this conversation continues from
        reference_trace_id: Earlier trace to replay node outputs from
        root_trace_ids: Chain of traces of the conversation, oldest first
        node_id: Unique id of this hop within the trace
        father_node_id: Node id of the caller's hop
        parallel_id: Group id shared by siblings dispatched together

    Graph bookkeeping:
        call_stack: Component names from the user down to this hop
        node_id_stack: Node ids along the same path
        pre_node_ids: Predecessor frontier of this hop
        latest_node_ids: Most recent children, the frontier for the next call
        parallel_dict: parallel_id -> {"pre_node_ids", "parallel_node_ids"}

    Data:
        arguments: Input of this hop
        shared_data: Propagates to every descendant
        group_data: Session-level data for the whole group
    """
    request_id: str = field(default_factory=generate_id)
    group_id: str = ""
    from_trace_id: str = ""
    current_trace_id: str = field(default_factory=generate_id)
    reference_trace_id: str = ""
    root_trace_ids: List[str] = field(default_factory=list)

    restart_node_id: str = ""
    restart_node_output: str = ""
    restart_node_order: Optional[int] = None
    is_load_data_for_restart: bool = True
    input_md5: str = ""

    caller: str = USER_CALLER
    callee: str = ""
    caller_category: str = USER_CALLER
    callee_category: str = ""
    call_stack: List[str] = field(default_factory=lambda: [USER_CALLER])
    node_id_stack: List[str] = field(default_factory=list)
    node_id: str = ""
    father_node_id: str = ""
    pre_node_ids: List[str] = field(default_factory=list)
    latest_node_ids: List[str] = field(default_factory=list)
    parallel_id: str = ""
    parallel_dict: Dict[str, Dict[str, List[str]]] = field(default_factory=dict)

    is_save_history: bool = True

    arguments: Dict[str, Any] = field(default_factory=dict)
    shared_data: Dict[str, Any] = field(default_factory=dict)
    group_data: Dict[str, Any] = field(default_factory=dict)

    mas: Optional["Mas"] = field(default=None, repr=False, compare=False)

    # ------------------------------------------------------------------
    # Cloning
    # ------------------------------------------------------------------

    def clone_with(self, **overrides: Any) -> 'OxyRequest':
        """
        Copy this request and apply overrides.

        Lists and maps are copied so the clone never aliases this request's
        containers. ``arguments`` is replaced when overridden;
        ``shared_data`` and ``group_data`` overrides are merged into the
        copied maps with override keys winning.

        Raises:
            ValueError: If an override names an unknown field
        """
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ValueError(f"Unknown OxyRequest fields: {sorted(unknown)}")

        values = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name == "mas":
                values[f.name] = value
            elif f.name == "parallel_dict":
                values[f.name] = {
                    pid: {k: list(v) for k, v in info.items()}
                    for pid, info in value.items()
                }
            elif isinstance(value, (list, dict)):
                values[f.name] = copy.copy(value)
            else:
                values[f.name] = value

        values["arguments"].pop(FIRST_QUERY_STRUCT, None)

        for name, value in overrides.items():
            if name in _MERGED_MAPS and value is not None:
                values[name].update(value)
            elif isinstance(value, (list, dict)):
                values[name] = copy.copy(value)
            else:
                values[name] = value

        return OxyRequest(**values)

    # ------------------------------------------------------------------
    # Query and memory helpers
    # ------------------------------------------------------------------

    def _data_map(self, master_level: bool) -> Dict[str, Any]:
        return self.shared_data if master_level else self.arguments

    def get_query(self, master_level: bool = False) -> str:
        query = self._data_map(master_level).get("query", "")
        return query if isinstance(query, str) else str(query)

    def get_query_object(self, master_level: bool = False) -> Any:
        return self._data_map(master_level).get("query", "")

    def set_query(self, query: Any, master_level: bool = False) -> None:
        self._data_map(master_level)["query"] = query

    @staticmethod
    def short_memory_key(master_level: bool = False) -> str:
        return MASTER_SHORT_MEMORY_KEY if master_level else SHORT_MEMORY_KEY

    def has_short_memory(self, master_level: bool = False) -> bool:
        return self.short_memory_key(master_level) in self.arguments

    def get_short_memory(self, master_level: bool = False) -> List[Dict[str, Any]]:
        """Short memory as a list of message dicts, created if absent."""
        key = self.short_memory_key(master_level)
        value = self.arguments.setdefault(key, [])
        if isinstance(value, Memory):
            return value.to_dict_list()
        return [m.to_dict() if isinstance(m, Message) else m for m in value]

    def set_short_memory(self, short_memory: Any, master_level: bool = False) -> None:
        if isinstance(short_memory, Memory):
            short_memory = short_memory.to_dict_list()
        self.arguments[self.short_memory_key(master_level)] = short_memory

    @property
    def session_name(self) -> str:
        """Conversation key between a caller and a callee."""
        return f"{self.caller}__{self.callee}"

    def has_node_id(self) -> bool:
        return bool(self.node_id)

    # ------------------------------------------------------------------
    # Data scopes
    # ------------------------------------------------------------------

    def get_shared_data(self, key: str, default: Any = None) -> Any:
        return self.shared_data.get(key, default)

    def set_shared_data(self, key: str, value: Any) -> None:
        self.shared_data[key] = value

    def get_group_data(self, key: str, default: Any = None) -> Any:
        return self.group_data.get(key, default)

    def set_group_data(self, key: str, value: Any) -> None:
        self.group_data[key] = value

    def get_global(self, key: Optional[str] = None, default: Any = None) -> Any:
        """Read host-wide data; without a key the whole map is returned."""
        if self.mas is None:
            return {} if key is None else default
        if key is None:
            return self.mas.global_data
        return self.mas.global_data.get(key, default)

    def set_global(self, key: str, value: Any) -> None:
        if self.mas is None:
            logger.warning("Cannot set global data: request is not bound to a Mas")
            return
        self.mas.global_data[key] = value

    # ------------------------------------------------------------------
    # Host interaction
    # ------------------------------------------------------------------

    def _require_mas(self) -> "Mas":
        if self.mas is None:
            raise RuntimeError("OxyRequest is not bound to a Mas")
        return self.mas

    def get_oxy(self, name: str) -> Optional["BaseOxy"]:
        return self._require_mas().oxy_name_to_oxy.get(name)

    def has_oxy(self, name: str) -> bool:
        return self.mas is not None and name in self.mas.oxy_name_to_oxy

    @property
    def message_key(self) -> str:
        mas = self._require_mas()
        return f"{mas.message_prefix}:{mas.name}:{self.current_trace_id}"

    async def send_message(self, message: Dict[str, Any]) -> None:
        """Push a notification for this trace to the host's message queue."""
        if self.mas is None or not message:
            return
        await self.mas.send_message(message, self.message_key)

    async def break_task(self) -> None:
        """Emit a close signal and cancel the top-level task of this trace."""
        await self.send_message({"event": "close", "data": "done"})
        task = self._require_mas().active_tasks.get(self.current_trace_id)
        if task is not None and not task.done():
            logger.info(f"Cancelling trace {self.current_trace_id}")
            task.cancel()

    async def start(self) -> OxyResponse:
        """Run the callee of this request as the root of a trace."""
        if not self.callee:
            raise ValueError("Callee cannot be empty")
        oxy = self.get_oxy(self.callee)
        if oxy is None:
            return OxyResponse.skipped(f"No permission for tool: {self.callee}")
        logger.info(f"Starting execution of: {self.callee}")
        return await oxy.execute(self)

    async def call(self, **kwargs: Any) -> OxyResponse:
        """
        Invoke another component as a child of this hop.

        Keyword arguments override fields of the child request and must
        include ``callee``. Unknown or unpermitted callees come back as
        SKIPPED and exceptions from the callee as FAILED; nothing raises.
        """
        if not kwargs.get("callee"):
            raise ValueError("call() requires a callee")

        oxy_request = self.clone_with(**kwargs)
        oxy_request.node_id = generate_id()
        oxy_request.latest_node_ids = [oxy_request.node_id]
        if not kwargs.get("parallel_id"):
            oxy_request.parallel_id = generate_id()
        oxy_request.parallel_dict = {}

        parallel_info = self.parallel_dict.get(oxy_request.parallel_id)
        if parallel_info is not None:
            parallel_info["parallel_node_ids"].append(oxy_request.node_id)
        else:
            parallel_info = {
                "pre_node_ids": list(self.latest_node_ids),
                "parallel_node_ids": [oxy_request.node_id],
            }
            self.parallel_dict[oxy_request.parallel_id] = parallel_info

        pre_node_ids = kwargs.get("pre_node_ids")
        oxy_request.pre_node_ids = list(pre_node_ids) if pre_node_ids else list(parallel_info["pre_node_ids"])
        self.latest_node_ids = parallel_info["parallel_node_ids"]

        oxy_request.father_node_id = self.node_id
        oxy_request.caller = self.callee
        oxy_request.caller_category = self.callee_category

        oxy_name = oxy_request.callee
        oxy = self.get_oxy(oxy_name)
        if oxy is None:
            logger.error(f"Oxy {oxy_name} does not exist (trace_id={self.current_trace_id})")
            return OxyResponse.skipped(f"No permission for tool: {oxy_name}")

        if oxy_request.caller_category != USER_CALLER and oxy.is_permission_required:
            caller_oxy = self.get_oxy(oxy_request.caller)
            if caller_oxy is None or not caller_oxy.can_call(oxy_name):
                logger.error(
                    f"No permission for oxy: {oxy_name}, caller: {oxy_request.caller}, "
                    f"trace_id={oxy_request.current_trace_id}, node_id={oxy_request.node_id}"
                )
                return OxyResponse.skipped(f"No permission for tool: {oxy_name}")

        try:
            return await oxy.execute(oxy_request)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error executing tool {oxy_name}: {e}")
            return OxyResponse(
                state=OxyState.FAILED,
                output=f"Error executing tool {oxy_name}: {e}",
                oxy_request=oxy_request,
            )

    async def retry_execute(
        self,
        oxy: "BaseOxy",
        oxy_request: Optional['OxyRequest'] = None
    ) -> OxyResponse:
        """
        Execute ``oxy`` with an outer retry loop around raised exceptions.

        Each attempt runs on a fresh clone of the request, with the
        component's own retries and delay. Exhaustion returns FAILED.
        """
        oxy_request = oxy_request or self
        for attempt in range(1, oxy.retries + 1):
            try:
                return await oxy.execute(oxy_request.clone_with())
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(
                    f"Oxy {oxy.name} exec failed, attempt {attempt}/{oxy.retries}, "
                    f"trace={oxy_request.current_trace_id}, node={oxy_request.node_id}: {e}"
                )
                if attempt == oxy.retries:
                    logger.error(f"Abandoning oxy {oxy.name} after {attempt} attempts")
                    break
                await asyncio.sleep(oxy.delay)

        return OxyResponse(
            state=OxyState.FAILED,
            output=f"Error executing tool {oxy.name}",
            oxy_request=oxy_request,
        )
