from .context import AgentState
from .network import (
    Network,
    SummaryHooks,
    capture_summary,
    create_code_agent,
    last_assistant_text,
    result_messages,
)
from .synthesizer import (
    RESPONSE_FALLBACK,
    TITLE_FALLBACK,
    Synthesis,
    Synthesizer,
    create_response_agent,
    create_title_agent,
    is_error_outcome,
    parse_agent_output,
)
from .tools import (
    FileEntry,
    ReadFilesCall,
    TerminalCall,
    ToolOutcome,
    ToolSet,
    WriteFilesCall,
    build_function_tools,
    parse_tool_call,
)

__all__ = [
    "AgentState",
    "FileEntry",
    "Network",
    "RESPONSE_FALLBACK",
    "ReadFilesCall",
    "SummaryHooks",
    "Synthesis",
    "Synthesizer",
    "TITLE_FALLBACK",
    "TerminalCall",
    "ToolOutcome",
    "ToolSet",
    "WriteFilesCall",
    "build_function_tools",
    "capture_summary",
    "create_code_agent",
    "create_response_agent",
    "create_title_agent",
    "is_error_outcome",
    "last_assistant_text",
    "parse_agent_output",
    "parse_tool_call",
    "result_messages",
]
