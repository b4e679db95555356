"""
Scoring strategies, one per scoring mode.

Every strategy starts from the time factor used across the game: an answer
worth full credit earns between MIN_POINTS (last second) and MAX_POINTS
(instant). The strategy decides which share of that the answer gets.
Crowd-based modes look at the stats recorded *before* this answer.
"""
import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

import config
from decks import tally_card
from models import Answer, Question, QuestionStats, QuestionType, ScoringMode

logger = logging.getLogger(__name__)


def time_points(time_remaining: int, time_limit: int) -> int:
    time_ratio = max(0.0, min(1.0, time_remaining / time_limit)) if time_limit > 0 else 0.0
    return int(config.MIN_POINTS + (config.MAX_POINTS - config.MIN_POINTS) * time_ratio)


def _is_empty(answer: Answer) -> bool:
    return answer is None or (isinstance(answer, list) and not answer)


def crowd_share(stats: Optional[QuestionStats], answer: Answer) -> Optional[float]:
    """Share of earlier responders whose answer tallied to the same card, or None if nobody answered yet."""
    if stats is None or stats.total_responses == 0:
        return None
    card_id = tally_card(answer)
    return stats.card_stats.get(card_id, 0) / stats.total_responses


class ScoringStrategy(ABC):

    @abstractmethod
    def credit(self, question: Question, answer: Answer, stats: Optional[QuestionStats]) -> float:
        """Fraction (0..1) of the time-based points this answer earns."""
        pass

    def score(self, question: Question, answer: Answer, stats: Optional[QuestionStats],
              time_remaining: int) -> int:
        if _is_empty(answer):
            return 0
        credit = max(0.0, min(1.0, self.credit(question, answer, stats)))
        return int(time_points(time_remaining, question.time_limit) * credit)


class TriviaStrategy(ScoringStrategy):
    """Right answers score. Sequences earn the fraction of positions in place."""

    def credit(self, question, answer, stats):
        if question.question_type == QuestionType.SEQUENCE:
            correct = question.card_ids()
            if not isinstance(answer, list):
                return 0.0
            in_place = sum(1 for i, card_id in enumerate(answer) if i < len(correct) and correct[i] == card_id)
            return in_place / len(correct)
        if question.correct_card_id is None:
            return 0.0
        return 1.0 if answer == question.correct_card_id else 0.0


class ConformistStrategy(ScoringStrategy):
    """Siding with the crowd pays. The first responder gets full credit."""

    def credit(self, question, answer, stats):
        share = crowd_share(stats, answer)
        return 1.0 if share is None else share


class ContrarianStrategy(ScoringStrategy):
    """Going against the crowd pays. The first responder gets full credit."""

    def credit(self, question, answer, stats):
        share = crowd_share(stats, answer)
        return 1.0 if share is None else 1.0 - share


class DefaultStrategy(ScoringStrategy):
    """Trivia rules when the question has a right answer, conformist rules otherwise."""

    def __init__(self):
        self._trivia = TriviaStrategy()
        self._conformist = ConformistStrategy()

    def credit(self, question, answer, stats):
        if question.has_correct_answer():
            return self._trivia.credit(question, answer, stats)
        return self._conformist.credit(question, answer, stats)


STRATEGIES: Dict[ScoringMode, ScoringStrategy] = {
    ScoringMode.TRIVIA: TriviaStrategy(),
    ScoringMode.CONFORMIST: ConformistStrategy(),
    ScoringMode.CONTRARIAN: ContrarianStrategy(),
    ScoringMode.DEFAULT: DefaultStrategy(),
}


def score_answer(mode: ScoringMode, question: Question, answer: Answer,
                 stats: Optional[QuestionStats], time_remaining: int) -> int:
    points = STRATEGIES[mode].score(question, answer, stats, time_remaining)
    logger.debug("Scored %d points for question %s (mode %s)", points, question.id, mode.value)
    return points


SCORING_MODE_ICONS = {
    ScoringMode.CONTRARIAN: "🎭",
    ScoringMode.CONFORMIST: "👥",
    ScoringMode.TRIVIA: "🧠",
    ScoringMode.DEFAULT: "🎯",
}


def scoring_mode_icon(mode: ScoringMode) -> str:
    return SCORING_MODE_ICONS.get(mode, SCORING_MODE_ICONS[ScoringMode.DEFAULT])
