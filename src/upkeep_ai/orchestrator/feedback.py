"""Human thumbs up/down feedback on task outputs."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from upkeep_ai.orchestrator.errors import InvalidInputError
from upkeep_ai.orchestrator.models import (
    FeedbackRating,
    FeedbackStats,
    FeedbackView,
    FeedbackWrite,
)
from upkeep_ai.orchestrator.registry import resolve_task_type
from upkeep_ai.orchestrator.repository import AiRepository

logger = logging.getLogger(__name__)


def parse_rating(rating: FeedbackRating | str) -> FeedbackRating:
    if isinstance(rating, FeedbackRating):
        return rating
    try:
        return FeedbackRating(str(rating).strip().lower())
    except ValueError as exc:
        raise InvalidInputError(f"rating must be 'up' or 'down'; got {rating!r}") from exc


class FeedbackService:
    """Stores feedback rows; every submission creates a new record."""

    def __init__(self, repository: AiRepository) -> None:
        self._repository = repository

    def submit_feedback(  # noqa: PLR0913
        self,
        *,
        job_id: str,
        actor_user_id: str,
        rating: FeedbackRating | str,
        reason_code: str | None = None,
        comment: str | None = None,
        context_snapshot: dict[str, Any] | None = None,
    ) -> str:
        """Record feedback and return its id.

        Raises `InvalidInputError` for a rating other than up/down and
        `TaskNotFoundError` when `job_id` does not exist.
        """

        parsed = parse_rating(rating)
        view = self._repository.insert_feedback(
            FeedbackWrite(
                job_id=job_id,
                actor_user_id=actor_user_id,
                rating=parsed,
                reason_code=reason_code,
                comment=comment,
                context_snapshot=context_snapshot,
            ),
        )
        logger.info(
            "Feedback recorded feedback_id=%s job_id=%s rating=%s",
            view.feedback_id,
            job_id,
            parsed.value,
        )
        return view.feedback_id

    def list_feedback(self, job_id: str | None = None, *, limit: int = 100) -> list[FeedbackView]:
        return self._repository.list_feedback(job_id=job_id, limit=limit)

    def feedback_stats(
        self,
        task_type: str | None = None,
        *,
        since: datetime | None = None,
    ) -> FeedbackStats:
        return self._repository.feedback_stats(
            task_type=resolve_task_type(task_type).value if task_type is not None else None,
            since=since,
        )
