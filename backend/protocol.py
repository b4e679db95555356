"""Messages exchanged between a player's client and the server.

Every message is `{"type": ..., "payload": ...}`. Requests and responses are
closed unions discriminated on `type`.
"""
from typing import Annotated, List, Literal, Optional, Union, get_args

from pydantic import Field, TypeAdapter

from models import (
    Answer, AnswerRecord, Deck, LeaderboardEntry, NO_ANSWER, PlayerSession, Question, SessionData, WireModel,
)


class UnknownRequestType(ValueError):
    def __init__(self, request_type):
        super().__init__(f"Unknown request type: {request_type!r}")
        self.request_type = request_type


# ---------------------------------------------------------------------------
# Request payloads
# ---------------------------------------------------------------------------

class EmptyPayload(WireModel):
    pass


class QuestionPayload(WireModel):
    question: Question


class DeleteQuestionPayload(WireModel):
    question_id: str


class SubmitAnswerPayload(WireModel):
    question_id: str
    question_index: int = Field(ge=0)
    answer: Answer = NO_ANSWER
    time_remaining: int = Field(default=0, ge=0)


class CompleteGamePayload(WireModel):
    answers: List[AnswerRecord] = Field(default_factory=list)
    total_score: int = Field(ge=0)
    session_data: Optional[SessionData] = None


class CreateNewPostPayload(WireModel):
    post_data: Deck


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class InitRequest(WireModel):
    type: Literal["INIT"] = "INIT"
    payload: EmptyPayload = Field(default_factory=EmptyPayload)


class GetPostDataRequest(WireModel):
    type: Literal["GET_POST_DATA"] = "GET_POST_DATA"
    payload: EmptyPayload = Field(default_factory=EmptyPayload)


class SubmitAnswerRequest(WireModel):
    type: Literal["SUBMIT_ANSWER"] = "SUBMIT_ANSWER"
    payload: SubmitAnswerPayload


class CompleteGameRequest(WireModel):
    type: Literal["COMPLETE_GAME"] = "COMPLETE_GAME"
    payload: CompleteGamePayload


class GetLeaderboardDataRequest(WireModel):
    type: Literal["GET_LEADERBOARD_DATA"] = "GET_LEADERBOARD_DATA"
    payload: EmptyPayload = Field(default_factory=EmptyPayload)


class AddQuestionRequest(WireModel):
    type: Literal["ADD_QUESTION"] = "ADD_QUESTION"
    payload: QuestionPayload


class EditQuestionRequest(WireModel):
    type: Literal["EDIT_QUESTION"] = "EDIT_QUESTION"
    payload: QuestionPayload


class DeleteQuestionRequest(WireModel):
    type: Literal["DELETE_QUESTION"] = "DELETE_QUESTION"
    payload: DeleteQuestionPayload


class CreateNewPostRequest(WireModel):
    type: Literal["CREATE_NEW_POST"] = "CREATE_NEW_POST"
    payload: CreateNewPostPayload


RequestVariant = Union[
    InitRequest,
    GetPostDataRequest,
    SubmitAnswerRequest,
    CompleteGameRequest,
    GetLeaderboardDataRequest,
    AddQuestionRequest,
    EditQuestionRequest,
    DeleteQuestionRequest,
    CreateNewPostRequest,
]
Request = Annotated[RequestVariant, Field(discriminator="type")]

REQUEST_MODELS = get_args(RequestVariant)
REQUEST_TYPES = {m.model_fields["type"].default: m for m in REQUEST_MODELS}

_request_adapter = TypeAdapter(Request)


def parse_request(message: dict) -> RequestVariant:
    """Validate a decoded client message. Raises UnknownRequestType or pydantic.ValidationError."""
    request_type = message.get("type")
    if not isinstance(request_type, str) or request_type not in REQUEST_TYPES:
        raise UnknownRequestType(request_type)
    return _request_adapter.validate_python(message)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class PostData(WireModel):
    post_id: str
    deck: Deck
    player_session: PlayerSession
    player_rank: Optional[int] = None
    user_id: Optional[str] = None
    username: str
    is_admin: bool = False


class InitResponse(WireModel):
    type: Literal["INIT_RESPONSE"] = "INIT_RESPONSE"
    payload: PostData


class GivePostData(WireModel):
    type: Literal["GIVE_POST_DATA"] = "GIVE_POST_DATA"
    payload: PostData


class AnswerResultPayload(WireModel):
    status: Literal["success", "error", "stale"]
    score: int = 0
    total_score: int = 0
    is_game_complete: bool = False
    # the deck changed under the player; the client must fetch the post data again
    refresh_required: bool = False
    message: Optional[str] = None


class AnswerResult(WireModel):
    type: Literal["ANSWER_RESULT"] = "ANSWER_RESULT"
    payload: AnswerResultPayload


class SaveConfirmation(WireModel):
    is_saved: bool


class ConfirmSavePlayerData(WireModel):
    type: Literal["CONFIRM_SAVE_PLAYER_DATA"] = "CONFIRM_SAVE_PLAYER_DATA"
    payload: SaveConfirmation


class LeaderboardData(WireModel):
    leaderboard: List[LeaderboardEntry] = Field(default_factory=list)
    player_rank: Optional[int] = None
    player_score: Optional[int] = None


class GiveLeaderboardData(WireModel):
    type: Literal["GIVE_LEADERBOARD_DATA"] = "GIVE_LEADERBOARD_DATA"
    payload: LeaderboardData


class ErrorPayload(WireModel):
    request_type: Optional[str] = None
    message: str
    retryable: bool = False


class ErrorResponse(WireModel):
    type: Literal["ERROR"] = "ERROR"
    payload: ErrorPayload


ResponseVariant = Union[
    InitResponse,
    GivePostData,
    AnswerResult,
    ConfirmSavePlayerData,
    GiveLeaderboardData,
    ErrorResponse,
]
Response = Annotated[ResponseVariant, Field(discriminator="type")]

_response_adapter = TypeAdapter(Response)


def parse_response(message: dict) -> ResponseVariant:
    return _response_adapter.validate_python(message)


def error(message: str, request_type: Optional[str] = None, retryable: bool = False) -> ErrorResponse:
    return ErrorResponse(payload=ErrorPayload(request_type=request_type, message=message, retryable=retryable))
