"""Deck, question and session models shared by the server and the client."""
import time
from enum import Enum
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

import config


class WireModel(BaseModel):
    """Base model: snake_case in Python, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class QuestionType(str, Enum):
    SINGLE = "single"
    SEQUENCE = "sequence"


class ScoringMode(str, Enum):
    CONTRARIAN = "contrarian"
    CONFORMIST = "conformist"
    TRIVIA = "trivia"
    DEFAULT = "default"


# A single-choice answer is a card id, a sequence answer is a list of card ids.
# None means the player let the timer run out without choosing.
Answer = Optional[Union[str, List[str]]]
NO_ANSWER = None


class Card(WireModel):
    id: str
    text: str


class Question(WireModel):
    id: str
    prompt: str
    author_username: Optional[str] = None
    question_type: QuestionType = QuestionType.SINGLE
    time_limit: int = config.DEFAULT_TIME_LIMIT
    cards: List[Card]
    correct_card_id: Optional[str] = None

    @field_validator("time_limit")
    @classmethod
    def validate_time_limit(cls, v: int) -> int:
        if v < 1 or v > config.MAX_TIME_LIMIT:
            raise ValueError(f"Time limit must be between 1 and {config.MAX_TIME_LIMIT} seconds")
        return v

    @field_validator("cards")
    @classmethod
    def validate_cards(cls, v: List[Card]) -> List[Card]:
        if not v:
            raise ValueError("Question must have at least 1 card")
        if len(v) > config.MAX_CARDS_PER_QUESTION:
            raise ValueError(f"Question can have at most {config.MAX_CARDS_PER_QUESTION} cards")
        ids = [c.id for c in v]
        if len(set(ids)) != len(ids):
            raise ValueError("Card ids must be unique within a question")
        return v

    @model_validator(mode="after")
    def validate_correct_card(self) -> "Question":
        if self.correct_card_id is not None and self.card(self.correct_card_id) is None:
            raise ValueError(f"Correct card '{self.correct_card_id}' is not one of the question's cards")
        return self

    def card(self, card_id: str) -> Optional[Card]:
        return next((c for c in self.cards if c.id == card_id), None)

    def card_ids(self) -> List[str]:
        return [c.id for c in self.cards]

    def has_correct_answer(self) -> bool:
        """Sequence questions are always ordered as authored; single ones need correct_card_id."""
        if self.question_type == QuestionType.SEQUENCE:
            return True
        return self.correct_card_id is not None


class QuestionStats(WireModel):
    question_id: str
    total_responses: int = Field(default=0, ge=0)
    card_stats: Dict[str, int] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_tallies(self) -> "QuestionStats":
        if any(count < 0 for count in self.card_stats.values()):
            raise ValueError("Card tallies must be non-negative")
        if sum(self.card_stats.values()) > self.total_responses:
            raise ValueError("Card tallies exceed total responses")
        return self

    def percentage(self, card_id: str) -> int:
        if self.total_responses == 0:
            return 0
        return round(100 * self.card_stats.get(card_id, 0) / self.total_responses)


class Deck(WireModel):
    id: str
    title: str
    created_by: str
    flair_text: Optional[str] = None
    questions: List[Question]
    question_stats: List[QuestionStats] = Field(default_factory=list)

    @field_validator("questions")
    @classmethod
    def validate_questions(cls, v: List[Question]) -> List[Question]:
        if not v:
            raise ValueError("Deck must have at least 1 question")
        ids = [q.id for q in v]
        if len(set(ids)) != len(ids):
            raise ValueError("Question ids must be unique within a deck")
        return v

    def question(self, question_id: str) -> Optional[Question]:
        return next((q for q in self.questions if q.id == question_id), None)

    def stats_for(self, question_id: str) -> Optional[QuestionStats]:
        return next((s for s in self.question_stats if s.question_id == question_id), None)


class AnswerRecord(WireModel):
    question_id: str
    answer: Answer = NO_ANSWER
    score: int = Field(default=0, ge=0)
    time_remaining: int = Field(default=0, ge=0)


class SessionData(WireModel):
    """Session metadata a client sends along with COMPLETE_GAME."""
    current_question_index: Optional[int] = Field(default=None, ge=0)
    scoring_mode: Optional[ScoringMode] = None


class PlayerSession(WireModel):
    current_question_index: int = Field(default=0, ge=0)
    total_score: int = Field(default=0, ge=0)
    scoring_mode: ScoringMode = ScoringMode.DEFAULT
    created_at: float = Field(default_factory=time.time)
    question_order: Optional[List[str]] = None
    answers: List[AnswerRecord] = Field(default_factory=list)
    username: Optional[str] = None

    def is_complete(self) -> bool:
        return self.question_order is not None and self.current_question_index >= len(self.question_order)


class LeaderboardEntry(WireModel):
    user_id: str
    username: Optional[str] = None
    total_score: int
    rank: int
