import json
import time
from typing import Any


SSE_HEADERS: dict[str, str] = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def sse_format(event: dict[str, Any]) -> str:
    return f"data: {json.dumps(event, default=str)}\n\n"


def emit_event(
    run_id: str, event_type: str, data: Any = None, error: Any = None
) -> dict[str, Any]:
    return {
        "event_type": event_type,
        "run_id": run_id,
        "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S+00:00", time.gmtime()),
        "data": data,
        "error": error,
    }


def tool_event_sse(run_id: str, ev: dict[str, Any]) -> str:
    """Render one recorded tool event in the started/completed progress shape."""
    if ev.get("phase") == "started":
        return sse_format(
            emit_event(
                run_id,
                "progress_update_tool_action_started",
                data={
                    "args": [
                        {
                            "id": ev["tool_id"],
                            "function": {
                                "name": ev["name"],
                                "arguments": ev.get("arguments"),
                            },
                        }
                    ]
                },
            )
        )
    return sse_format(
        emit_event(
            run_id,
            "progress_update_tool_action_completed",
            data={
                "result": {
                    "tool_call": {"id": ev["tool_id"], "function": {"name": ev["name"]}},
                    "output_data": ev.get("output_data"),
                }
            },
        )
    )
