from .base import ProgressEvent, ToolContext, ToolDescriptor, ToolResult, ToolValidationError
from .executor import InvocationStatus, ToolExecutor, ToolInvocation
from .invocations import InvocationTracker
from .providers import LocalToolProvider, McpToolProvider, ToolProvider
from .registry import Customization, ToolRegistry

__all__ = [
    "Customization",
    "InvocationStatus",
    "InvocationTracker",
    "LocalToolProvider",
    "McpToolProvider",
    "ProgressEvent",
    "ToolContext",
    "ToolDescriptor",
    "ToolExecutor",
    "ToolInvocation",
    "ToolProvider",
    "ToolRegistry",
    "ToolResult",
    "ToolValidationError",
]
