"""
Base class for agents.

Agents add conversation bookkeeping on top of the component lifecycle:

- the chain of earlier traces of a conversation (``root_trace_ids``)
- a ``{app}_trace`` record for every request coming from the user
- a ``{app}_history`` record per caller/callee session, used to rebuild
  short memory on later turns
"""

import json
import logging
from typing import Any, Dict, List, Optional

from ...core.constants import USER_CALLER
from ...schemas.request import OxyRequest
from ...schemas.response import OxyResponse
from ...utils.identifiers import next_order, to_json
from ..flows import BaseFlow

logger = logging.getLogger(__name__)


def _split_trace_ids(value: Any) -> List[str]:
    if isinstance(value, list):
        return [str(v) for v in value if v]
    if isinstance(value, str) and value:
        return value.split("|")
    return []


class BaseAgent(BaseFlow):
    """
    Agents are flows that keep traces and history.

    Attributes:
        is_master: Entry agent for requests that name no callee
    """

    def __init__(self, name: str, desc: str = "", is_master: bool = False, **kwargs: Any):
        super().__init__(name, desc, **kwargs)
        self.is_master = is_master

    async def _pre_process(self, oxy_request: OxyRequest) -> OxyRequest:
        oxy_request = await super()._pre_process(oxy_request)
        if oxy_request.caller_category == USER_CALLER and oxy_request.from_trace_id:
            if not oxy_request.root_trace_ids:
                oxy_request.root_trace_ids = await self._load_root_trace_ids(oxy_request.from_trace_id)
            if oxy_request.from_trace_id not in oxy_request.root_trace_ids:
                oxy_request.root_trace_ids.append(oxy_request.from_trace_id)
        return oxy_request

    async def _load_root_trace_ids(self, from_trace_id: str) -> List[str]:
        """Trace chain recorded for ``from_trace_id``, oldest first."""
        if self.mas is None or self.mas.store is None:
            return []
        try:
            result = await self.mas.store.search(
                f"{self.app_name}_trace",
                {"query": {"term": {"_id": from_trace_id}}, "size": 1},
            )
        except Exception as e:
            logger.error(f"Failed to load trace {from_trace_id}: {e}")
            return []
        hits = (result or {}).get("hits", {}).get("hits", [])
        if not hits:
            logger.debug(f"No trace record for from_trace_id={from_trace_id}")
            return []
        return _split_trace_ids((hits[0].get("_source") or {}).get("root_trace_ids"))

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _trace_record(self, oxy_request: OxyRequest) -> Dict[str, Any]:
        return {
            "request_id": oxy_request.request_id,
            "trace_id": oxy_request.current_trace_id,
            "group_id": oxy_request.group_id,
            "from_trace_id": oxy_request.from_trace_id,
            "root_trace_ids": list(oxy_request.root_trace_ids),
            "shared_data": to_json(oxy_request.shared_data),
            "group_data": to_json(oxy_request.group_data),
            "input": to_json(oxy_request.arguments),
            "callee": oxy_request.callee,
            "output": "",
            "create_time": next_order(),
        }

    def _pre_save_data(self, oxy_request: OxyRequest) -> None:
        super()._pre_save_data(oxy_request)
        if not self._can_save() or oxy_request.caller_category != USER_CALLER:
            return
        store = self.mas.store
        trace_id = oxy_request.current_trace_id
        record = self._trace_record(oxy_request)
        self.mas.event_processor.submit_create(
            f"{trace_id}:trace",
            lambda: store.index(f"{self.app_name}_trace", trace_id, record),
        )

    def _post_save_data(self, oxy_response: OxyResponse) -> None:
        super()._post_save_data(oxy_response)
        oxy_request = oxy_response.oxy_request
        if not self._can_save() or oxy_request is None:
            return
        store = self.mas.store

        if oxy_request.caller_category == USER_CALLER:
            trace_id = oxy_request.current_trace_id
            fields = {"output": oxy_response.output_as_string, "state": oxy_response.state.value}
            self.mas.event_processor.submit_update(
                f"{trace_id}:trace",
                lambda: store.update(f"{self.app_name}_trace", trace_id, fields),
            )

        if oxy_request.is_save_history and oxy_response.is_success:
            history_id = f"{oxy_request.current_trace_id}__{oxy_request.session_name}"
            record = self._history_record(oxy_response)
            self.mas.task_registry.create_task(
                self._save_history(history_id, record), name=f"history:{history_id}"
            )

    def _history_record(self, oxy_response: OxyResponse) -> Dict[str, Any]:
        oxy_request = oxy_response.oxy_request
        memory = {"query": oxy_request.get_query(), "answer": oxy_response.output}
        memory.update(oxy_response.extra)
        return {
            "history_id": f"{oxy_request.current_trace_id}__{oxy_request.session_name}",
            "session_name": oxy_request.session_name,
            "trace_id": oxy_request.current_trace_id,
            "memory": memory,
            "create_time": next_order(),
        }

    async def _save_history(self, history_id: str, record: Dict[str, Any]) -> None:
        try:
            await self.mas.store.index(f"{self.app_name}_history", history_id, record)
        except Exception as e:
            logger.error(f"Failed to save history {history_id}: {e}")

    def class_attr(self) -> Dict[str, Any]:
        attrs = super().class_attr()
        attrs["is_master"] = self.is_master
        return attrs


def load_history_memory(source: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """The ``memory`` field of a history record as a dict; stored JSON strings are decoded."""
    memory = (source or {}).get("memory")
    if isinstance(memory, dict):
        return memory
    if isinstance(memory, str) and memory:
        try:
            decoded = json.loads(memory)
        except json.JSONDecodeError as e:
            logger.warning(f"Skipping unreadable history memory: {e}")
            return {}
        return decoded if isinstance(decoded, dict) else {}
    return {}
