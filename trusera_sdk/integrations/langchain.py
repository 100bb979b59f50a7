"""LangChain callback handler that records runs as Trusera events.

The handler follows LangChain's callback protocol structurally, so
``langchain`` is not a dependency of this package::

    client = TruseraClient("tsk_xxx")
    handler = TruseraCallbackHandler(client)
    model = ChatOpenAI(callbacks=[handler])
    await model.ainvoke("What is AI safety?")
    await client.close()
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any
from uuid import UUID

from trusera_sdk.client import TruseraClient
from trusera_sdk.enums import EventType
from trusera_sdk.events import Event, create_event


def _component_name(serialized: Mapping[str, Any] | None, kwargs: Mapping[str, Any]) -> str:
    if kwargs.get("name"):
        return str(kwargs["name"])
    if serialized:
        if serialized.get("name"):
            return str(serialized["name"])
        ids = serialized.get("id")
        if isinstance(ids, Sequence) and not isinstance(ids, str) and ids:
            return str(ids[-1])
    return "unknown"


def _message_text(message: Any) -> str:
    role = getattr(message, "type", None)
    content = getattr(message, "content", message)
    return f"{role}: {content}" if role else str(content)


def _run_metadata(
    run_id: UUID,
    parent_run_id: UUID | None,
    tags: list[str] | None,
    metadata: Mapping[str, Any] | None,
) -> dict[str, Any]:
    return {
        "run_id": str(run_id),
        "parent_run_id": str(parent_run_id) if parent_run_id else None,
        "tags": list(tags or []),
        **(metadata or {}),
    }


class TruseraCallbackHandler:
    # Flags read by LangChain's callback manager.
    raise_error = False
    run_inline = False
    ignore_llm = False
    ignore_chain = False
    ignore_agent = True
    ignore_retriever = True
    ignore_chat_model = False
    ignore_retry = True
    ignore_custom_event = True

    def __init__(self, client: TruseraClient) -> None:
        self.client = client
        self._pending: dict[str, Event] = {}

    def on_llm_start(
        self,
        serialized: Mapping[str, Any] | None,
        prompts: list[str],
        *,
        run_id: UUID,
        parent_run_id: UUID | None = None,
        tags: list[str] | None = None,
        metadata: Mapping[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        self._start(
            run_id,
            create_event(
                EventType.LLM_INVOKE,
                f"langchain.llm.{_component_name(serialized, kwargs)}",
                {
                    "prompts": prompts,
                    "prompt_count": len(prompts),
                    "invocation_params": kwargs.get("invocation_params") or {},
                },
                _run_metadata(run_id, parent_run_id, tags, metadata),
            ),
        )

    def on_chat_model_start(
        self,
        serialized: Mapping[str, Any] | None,
        messages: list[list[Any]],
        *,
        run_id: UUID,
        parent_run_id: UUID | None = None,
        tags: list[str] | None = None,
        metadata: Mapping[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        """Record a chat model run the same way as a completion model run."""
        prompts = ["\n".join(_message_text(message) for message in conversation) for conversation in messages]
        self.on_llm_start(
            serialized,
            prompts,
            run_id=run_id,
            parent_run_id=parent_run_id,
            tags=tags,
            metadata=metadata,
            **kwargs,
        )

    def on_llm_new_token(self, token: str, **kwargs: Any) -> None:
        pass

    def on_llm_end(self, response: Any, *, run_id: UUID, **kwargs: Any) -> None:
        texts = [
            getattr(generation, "text", "")
            for candidates in getattr(response, "generations", [])
            for generation in candidates
        ]
        self._finish(run_id, "completed", outputs=texts, output_count=len(texts))

    def on_llm_error(self, error: BaseException, *, run_id: UUID, **kwargs: Any) -> None:
        self._fail(run_id, error)

    def on_tool_start(
        self,
        serialized: Mapping[str, Any] | None,
        input_str: str,
        *,
        run_id: UUID,
        parent_run_id: UUID | None = None,
        tags: list[str] | None = None,
        metadata: Mapping[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        self._start(
            run_id,
            create_event(
                EventType.TOOL_CALL,
                f"langchain.tool.{_component_name(serialized, kwargs)}",
                {"input": input_str, "input_length": len(input_str)},
                _run_metadata(run_id, parent_run_id, tags, metadata),
            ),
        )

    def on_tool_end(self, output: Any, *, run_id: UUID, **kwargs: Any) -> None:
        text = str(output)
        self._finish(run_id, "completed", output=text, output_length=len(text))

    def on_tool_error(self, error: BaseException, *, run_id: UUID, **kwargs: Any) -> None:
        self._fail(run_id, error)

    def on_chain_start(
        self,
        serialized: Mapping[str, Any] | None,
        inputs: Mapping[str, Any],
        *,
        run_id: UUID,
        parent_run_id: UUID | None = None,
        tags: list[str] | None = None,
        metadata: Mapping[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        inputs = dict(inputs) if isinstance(inputs, Mapping) else {"input": inputs}
        self._start(
            run_id,
            create_event(
                EventType.DECISION,
                f"langchain.chain.{_component_name(serialized, kwargs)}",
                {"inputs": inputs, "input_keys": list(inputs)},
                _run_metadata(run_id, parent_run_id, tags, metadata),
            ),
        )

    def on_chain_end(self, outputs: Mapping[str, Any], *, run_id: UUID, **kwargs: Any) -> None:
        outputs = dict(outputs) if isinstance(outputs, Mapping) else {"output": outputs}
        self._finish(run_id, "completed", outputs=outputs, output_keys=list(outputs))

    def on_chain_error(self, error: BaseException, *, run_id: UUID, **kwargs: Any) -> None:
        self._fail(run_id, error)

    def on_text(self, text: str, **kwargs: Any) -> None:
        pass

    def get_pending_event_count(self) -> int:
        return len(self._pending)

    def clear_pending_events(self) -> None:
        """Forget unfinished runs. Meant for tests and error recovery."""
        self._pending.clear()

    def _start(self, run_id: UUID, event: Event) -> None:
        self._pending[str(run_id)] = event
        self.client.track(event)

    def _finish(self, run_id: UUID, outcome: str, **details: Any) -> None:
        start = self._pending.pop(str(run_id), None)
        if start is None:
            return
        self.client.track(
            create_event(start.type, f"{start.name}.{outcome}", {**start.payload, **details}, start.metadata)
        )

    def _fail(self, run_id: UUID, error: BaseException) -> None:
        self._finish(run_id, "error", error=str(error), error_type=type(error).__name__)
