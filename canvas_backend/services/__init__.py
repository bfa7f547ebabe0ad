from .agent_permissions import AgentPermissionService
from .artifact_pipeline import ArtifactPipeline
from .artifact_store import ArtifactStore
from .tool_runs import ToolCall, ToolRunService

__all__ = ["AgentPermissionService", "ArtifactPipeline", "ArtifactStore", "ToolCall", "ToolRunService"]
