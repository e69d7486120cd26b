from lipsync_dispatch.lipsync.comfy_client import ComfyDispatchClient, view_url
from lipsync_dispatch.lipsync.prompt import WorkflowBuilder

__all__ = ["ComfyDispatchClient", "WorkflowBuilder", "view_url"]
