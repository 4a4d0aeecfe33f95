"""Lesson catalog shown by the UI and slide-cache warm-up for it."""
from __future__ import annotations

from dataclasses import dataclass

from .generation import GenerationError, GenerationOrchestrator, GenerationTask
from .observability import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Lesson:
    id: int
    header: str
    icon: str

    def to_dict(self) -> dict:
        return {"id": self.id, "header": self.header, "icon": self.icon}


LESSONS: tuple[Lesson, ...] = (
    Lesson(1, "Diagnosis", "fas fa-stethoscope"),
    Lesson(2, "Treatment", "fas fa-hospital"),
    Lesson(3, "Emotional Support", "fas fa-heart"),
    Lesson(4, "Financial Support", "fas fa-dollar-sign"),
    Lesson(5, "Life After", "fas fa-sun"),
)


def warm_slide_cache(orchestrator: GenerationOrchestrator, lessons=LESSONS) -> int:
    """Generates slide content for each lesson header so the first visitor hits the cache."""
    warmed = 0
    for lesson in lessons:
        try:
            orchestrator.generate(GenerationTask.TOPIC_SLIDE, lesson.header)
        except GenerationError as exc:
            logger.warning("slide_warmup_failed", lesson=lesson.header, error=str(exc))
            continue
        warmed += 1
    logger.info("slide_warmup_completed", warmed=warmed, total=len(lessons))
    return warmed
