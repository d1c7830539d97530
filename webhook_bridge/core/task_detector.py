"""Detection of automated "task" prompts sent by chat frontends.

OpenWebUI and LibreChat fire background requests to generate titles, tags
and follow-up questions. Workflows usually want to answer those cheaply, so
the outbound payload flags them with isTask/taskType.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable

import structlog

from webhook_bridge.core.file_processor import extract_text

logger = structlog.get_logger(__name__)


class TaskType(str, Enum):
    GENERATE_TITLE = "generate_title"
    GENERATE_TAGS = "generate_tags"
    GENERATE_FOLLOW_UP_QUESTIONS = "generate_follow_up_questions"


Detector = Callable[[list[dict]], bool]


@dataclass
class TaskDetection:
    is_task: bool = False
    task_type: TaskType | None = None


# Each group is a list of patterns that must ALL match; ANY matching group
# flags the task.
DETECTOR_PATTERNS: dict[TaskType, list[list[re.Pattern]]] = {
    TaskType.GENERATE_TITLE: [
        # OpenWebUI
        [
            re.compile(r"generate a concise.*3-5 word title.*emoji", re.IGNORECASE),
            re.compile(r"<chat_history>", re.IGNORECASE),
            re.compile(r"</chat_history>", re.IGNORECASE),
        ],
        # LibreChat
        [
            re.compile(r"provide a concise.*5-word-or-less title", re.IGNORECASE),
            re.compile(r"title case conventions", re.IGNORECASE),
            re.compile(r"only return the title itself", re.IGNORECASE),
        ],
    ],
    TaskType.GENERATE_TAGS: [
        # OpenWebUI
        [
            re.compile(r"generate.*1-3.*broad tags.*categorizing", re.IGNORECASE),
            re.compile(r"<chat_history>", re.IGNORECASE),
            re.compile(r"</chat_history>", re.IGNORECASE),
        ],
    ],
    TaskType.GENERATE_FOLLOW_UP_QUESTIONS: [
        # OpenWebUI
        [
            re.compile(r"suggest.*3-5.*follow[-\s]?up questions", re.IGNORECASE),
            re.compile(r"<chat_history>", re.IGNORECASE),
            re.compile(r"</chat_history>", re.IGNORECASE),
        ],
    ],
}


def create_detector(pattern_groups: list[list[re.Pattern]]) -> Detector:
    """Build a detector over the system message and the last message."""

    def detect(messages: list[dict]) -> bool:
        if not messages:
            return False
        system = next((m for m in messages if m.get("role") == "system"), None)
        combined = " ".join([
            extract_text(system) if system else "",
            extract_text(messages[-1]),
        ])
        return any(all(p.search(combined) for p in group) for group in pattern_groups)

    return detect


class TaskDetectorService:
    """Ordered registry of detectors; the first one that matches wins."""

    def __init__(self):
        self._detectors: dict[TaskType, Detector] = {}

    def register_detector(self, task_type: TaskType, detector: Detector) -> None:
        if not callable(detector):
            raise TypeError("Detector must be callable")
        self._detectors[task_type] = detector

    def clear_detectors(self) -> None:
        self._detectors.clear()

    def detect_task(self, messages: list[dict]) -> TaskDetection:
        if not messages:
            return TaskDetection()

        for task_type, detector in self._detectors.items():
            try:
                if detector(messages):
                    return TaskDetection(is_task=True, task_type=task_type)
            except Exception as e:
                logger.error("task_detector.failed", task_type=str(task_type), error=str(e))

        return TaskDetection()


def default_task_detector() -> TaskDetectorService:
    """Service preloaded with the built-in OpenWebUI/LibreChat detectors."""
    service = TaskDetectorService()
    for task_type, groups in DETECTOR_PATTERNS.items():
        service.register_detector(task_type, create_detector(groups))
    return service
