from cognileap.study_tools.prompts import FlashcardOptions
from cognileap.study_tools.service import (
    StudyToolRequest,
    StudyToolResult,
    StudyToolService,
    describe_failure,
)

__all__ = [
    "FlashcardOptions",
    "StudyToolRequest",
    "StudyToolResult",
    "StudyToolService",
    "describe_failure",
]
