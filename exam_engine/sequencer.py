"""
Question Sequencer: fixes the per-session question order and navigates it.

The order is a uniform shuffle of the pool seeded by the session id, so the
same session always maps index -> question identically (reloads, audits).
"""
import logging
import random
from typing import List, Optional, Sequence

from exam_engine.errors import EmptyPoolError, ValidationError
from exam_engine.models import Question

logger = logging.getLogger(__name__)


def fix_order(question_pool: Sequence[Question], seed: Optional[str] = None) -> List[str]:
    """
    Return a permutation of the pool's question ids.

    Args:
        question_pool: Questions drawn for this attempt
        seed: Session id (or any string); None draws from system entropy

    Raises:
        EmptyPoolError: pool is empty, the exam cannot start
        ValidationError: pool contains the same id twice
    """
    if not question_pool:
        raise EmptyPoolError("Question pool is empty; exam cannot start")
    ids = [q.id for q in question_pool]
    if len(set(ids)) != len(ids):
        raise ValidationError("Question pool contains duplicate ids")
    rng = random.Random(seed) if seed is not None else random.SystemRandom()
    rng.shuffle(ids)
    logger.debug(f"Fixed order of {len(ids)} questions (seeded={seed is not None})")
    return ids


class QuestionSequencer:
    """Clamped positional navigation over a fixed order. No wrap, no jump."""

    def __init__(self, ordered_question_ids: Sequence[str], position: int = 0):
        if not ordered_question_ids:
            raise EmptyPoolError("Cannot navigate an empty question order")
        self._order = list(ordered_question_ids)
        self._position = self._clamp(position)

    @classmethod
    def fix(cls, question_pool: Sequence[Question], seed: Optional[str] = None) -> "QuestionSequencer":
        return cls(fix_order(question_pool, seed=seed))

    def _clamp(self, index: int) -> int:
        return max(0, min(index, len(self._order) - 1))

    @property
    def order(self) -> List[str]:
        return list(self._order)

    @property
    def position(self) -> int:
        return self._position

    @property
    def current_id(self) -> str:
        return self._order[self._position]

    @property
    def is_first(self) -> bool:
        return self._position == 0

    @property
    def is_last(self) -> bool:
        return self._position == len(self._order) - 1

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, question_id: str) -> bool:
        return question_id in self._order

    def advance(self) -> int:
        self._position = self._clamp(self._position + 1)
        return self._position

    def retreat(self) -> int:
        self._position = self._clamp(self._position - 1)
        return self._position
