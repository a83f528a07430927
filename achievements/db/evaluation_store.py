"""
Evaluation Store

Storage for user ratings and comments. At most one ACTIVE evaluation
exists per (user, achievement); the store enforces this on insert so two
concurrent submissions cannot both succeed.
"""

from abc import ABC, abstractmethod
from threading import Lock
from typing import Optional
from uuid import UUID

from ..schemas import Evaluation
from .store import StoreError


class DuplicateEvaluationError(StoreError):
    """Raised when the user already has an active evaluation of the achievement."""
    pass


class EvaluationStore(ABC):
    """
    Abstract store for evaluations.

    Listings return active evaluations only, most recently evaluated first.
    """

    @abstractmethod
    def insert(self, evaluation: Evaluation) -> Evaluation:
        """Add an evaluation. Raises DuplicateEvaluationError on a second active one."""
        pass

    @abstractmethod
    def get_by_id(self, evaluation_id: UUID) -> Optional[Evaluation]:
        pass

    @abstractmethod
    def update(self, evaluation: Evaluation) -> bool:
        """Overwrite an existing evaluation. Returns False if it does not exist."""
        pass

    @abstractmethod
    def find_active(self, user_id: UUID, achievement_id: UUID) -> Optional[Evaluation]:
        pass

    @abstractmethod
    def list_for_achievement(
        self,
        achievement_id: UUID,
        offset: int = 0,
        limit: int = 10,
    ) -> list[Evaluation]:
        pass

    @abstractmethod
    def list_for_user(self, user_id: UUID, offset: int = 0, limit: int = 10) -> list[Evaluation]:
        pass

    @abstractmethod
    def count_for_achievement(self, achievement_id: UUID) -> int:
        pass

    @abstractmethod
    def count_for_user(self, user_id: UUID) -> int:
        pass

    @abstractmethod
    def rating_counts(self, achievement_id: UUID) -> dict[int, int]:
        """Active evaluations of an achievement grouped by rating value."""
        pass


class InMemoryEvaluationStore(EvaluationStore):
    """In-memory implementation of EvaluationStore."""

    def __init__(self):
        self._evaluations: dict[UUID, Evaluation] = {}
        self._lock = Lock()

    def _active(self) -> list[Evaluation]:
        with self._lock:
            return [e for e in self._evaluations.values() if e.is_active]

    def insert(self, evaluation: Evaluation) -> Evaluation:
        with self._lock:
            if evaluation.evaluation_id in self._evaluations:
                raise StoreError(f"Evaluation {evaluation.evaluation_id} already exists")
            if evaluation.is_active and any(
                e.is_active
                and e.user_id == evaluation.user_id
                and e.achievement_id == evaluation.achievement_id
                for e in self._evaluations.values()
            ):
                raise DuplicateEvaluationError(
                    f"User {evaluation.user_id} already evaluated {evaluation.achievement_id}"
                )
            self._evaluations[evaluation.evaluation_id] = evaluation
        return evaluation

    def get_by_id(self, evaluation_id: UUID) -> Optional[Evaluation]:
        with self._lock:
            return self._evaluations.get(evaluation_id)

    def update(self, evaluation: Evaluation) -> bool:
        with self._lock:
            if evaluation.evaluation_id not in self._evaluations:
                return False
            self._evaluations[evaluation.evaluation_id] = evaluation
            return True

    def find_active(self, user_id: UUID, achievement_id: UUID) -> Optional[Evaluation]:
        for e in self._active():
            if e.user_id == user_id and e.achievement_id == achievement_id:
                return e
        return None

    def _newest_first(self, evaluations: list[Evaluation], offset: int, limit: int) -> list[Evaluation]:
        ordered = sorted(evaluations, key=lambda e: e.evaluated_at, reverse=True)
        return ordered[offset:offset + limit]

    def list_for_achievement(
        self,
        achievement_id: UUID,
        offset: int = 0,
        limit: int = 10,
    ) -> list[Evaluation]:
        matched = [e for e in self._active() if e.achievement_id == achievement_id]
        return self._newest_first(matched, offset, limit)

    def list_for_user(self, user_id: UUID, offset: int = 0, limit: int = 10) -> list[Evaluation]:
        matched = [e for e in self._active() if e.user_id == user_id]
        return self._newest_first(matched, offset, limit)

    def count_for_achievement(self, achievement_id: UUID) -> int:
        return sum(1 for e in self._active() if e.achievement_id == achievement_id)

    def count_for_user(self, user_id: UUID) -> int:
        return sum(1 for e in self._active() if e.user_id == user_id)

    def rating_counts(self, achievement_id: UUID) -> dict[int, int]:
        counts: dict[int, int] = {}
        for e in self._active():
            if e.achievement_id == achievement_id:
                counts[e.rating] = counts.get(e.rating, 0) + 1
        return counts

    def clear(self) -> None:
        """Clear all evaluations (for testing only)."""
        with self._lock:
            self._evaluations.clear()
