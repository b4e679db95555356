import sys
import os

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import config
from models import Card, Question, QuestionStats, QuestionType, ScoringMode
from scoring import crowd_share, score_answer, scoring_mode_icon, time_points


def single(correct=None, time_limit=20):
    return Question(
        id="q1", prompt="Pick one", time_limit=time_limit, correct_card_id=correct,
        cards=[Card(id="a", text="A"), Card(id="b", text="B")],
    )


def sequence(time_limit=20):
    return Question(
        id="q2", prompt="Order", question_type=QuestionType.SEQUENCE, time_limit=time_limit,
        cards=[Card(id="a", text="A"), Card(id="b", text="B"), Card(id="c", text="C"), Card(id="d", text="D")],
    )


def stats(total, **cards):
    return QuestionStats(question_id="q1", total_responses=total, card_stats=cards)


class TestTimePoints:
    def test_instant_answer_gets_max(self):
        assert time_points(20, 20) == config.MAX_POINTS

    def test_last_second_gets_min(self):
        assert time_points(0, 20) == config.MIN_POINTS

    def test_halfway(self):
        assert time_points(10, 20) == 550

    def test_clamps_excess_time(self):
        assert time_points(50, 20) == config.MAX_POINTS


class TestTrivia:
    def test_correct_single(self):
        assert score_answer(ScoringMode.TRIVIA, single("a"), "a", None, 20) == 1000

    def test_wrong_single(self):
        assert score_answer(ScoringMode.TRIVIA, single("a"), "b", None, 20) == 0

    def test_single_without_correct_answer_scores_zero(self):
        assert score_answer(ScoringMode.TRIVIA, single(), "a", None, 20) == 0

    def test_perfect_sequence(self):
        assert score_answer(ScoringMode.TRIVIA, sequence(), ["a", "b", "c", "d"], None, 20) == 1000

    def test_partial_sequence(self):
        # a and d in place -> half credit
        assert score_answer(ScoringMode.TRIVIA, sequence(), ["a", "c", "b", "d"], None, 20) == 500

    def test_short_sequence(self):
        assert score_answer(ScoringMode.TRIVIA, sequence(), ["a"], None, 20) == 250


class TestCrowdModes:
    def test_crowd_share(self):
        assert crowd_share(stats(4, a=3, b=1), "a") == 0.75
        assert crowd_share(None, "a") is None
        assert crowd_share(stats(0), "a") is None

    def test_conformist_rewards_majority(self):
        assert score_answer(ScoringMode.CONFORMIST, single(), "a", stats(4, a=3, b=1), 20) == 750

    def test_contrarian_rewards_minority(self):
        assert score_answer(ScoringMode.CONTRARIAN, single(), "b", stats(4, a=3, b=1), 20) == 750

    @pytest.mark.parametrize("mode", [ScoringMode.CONFORMIST, ScoringMode.CONTRARIAN])
    def test_first_responder_gets_full_credit(self, mode):
        assert score_answer(mode, single(), "a", None, 20) == 1000

    def test_sequence_uses_first_pick(self):
        assert score_answer(ScoringMode.CONFORMIST, sequence(), ["b", "a"], stats(2, b=1), 20) == 500


class TestDefaultMode:
    def test_uses_trivia_when_answer_known(self):
        assert score_answer(ScoringMode.DEFAULT, single("b"), "a", stats(1, a=1), 20) == 0

    def test_uses_conformist_otherwise(self):
        assert score_answer(ScoringMode.DEFAULT, single(), "a", stats(2, a=1), 20) == 500


class TestEmptyAnswers:
    @pytest.mark.parametrize("mode", list(ScoringMode))
    def test_no_answer_scores_zero(self, mode):
        assert score_answer(mode, single("a"), None, None, 20) == 0
        assert score_answer(mode, sequence(), [], None, 20) == 0


def test_scoring_mode_icons():
    assert scoring_mode_icon(ScoringMode.CONTRARIAN) == "🎭"
    assert scoring_mode_icon(ScoringMode.DEFAULT) == "🎯"
