"""Fill the lipsync ComfyUI workflow template with one job's inputs."""

import copy
import json
from pathlib import Path

from lipsync_dispatch.main.exceptions import WorkflowTemplateError
from lipsync_dispatch.main.logging import get_logger

logger = get_logger(__name__)

AUDIO_NODE = "125"
IMAGE_NODE = "284"
TEXT_NODE = "241"
WEBHOOK_NODE = "307"

# __str0__ is the saved video path, __str1__ the tracking id
WEBHOOK_REQUEST_BODY = """{
    "video_path": "__str0__",
    "status": "completed",
    "tracking_id": "__str1__"
  }"""


class WorkflowBuilder:
    """Loads the workflow template once and builds per-job copies."""

    def __init__(self, template_path: str | Path) -> None:
        self._template_path = Path(template_path)
        self._template: dict | None = None

    def _load(self) -> dict:
        if self._template is None:
            logger.debug(f"Loading workflow template from {self._template_path}")
            try:
                self._template = json.loads(self._template_path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                raise WorkflowTemplateError(
                    f"Could not load workflow template {self._template_path}: {exc}"
                ) from exc
        return self._template

    def build(
        self,
        audio_filename: str,
        image_filename: str,
        positive_prompt: str,
        tracking_id: str,
        webhook_url: str,
    ) -> dict:
        workflow = copy.deepcopy(self._load())

        if AUDIO_NODE in workflow:
            workflow[AUDIO_NODE]["inputs"]["audio"] = audio_filename

        if IMAGE_NODE in workflow:
            workflow[IMAGE_NODE]["inputs"]["image"] = image_filename

        if TEXT_NODE in workflow:
            workflow[TEXT_NODE]["inputs"]["positive_prompt"] = positive_prompt

        if WEBHOOK_NODE in workflow:
            inputs = workflow[WEBHOOK_NODE]["inputs"]
            inputs["target_url"] = webhook_url
            inputs["str1"] = tracking_id
            inputs["request_body"] = WEBHOOK_REQUEST_BODY

        return workflow
