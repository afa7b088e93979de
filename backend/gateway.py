from typing import Callable, Dict, Optional
import logging

from pydantic import BaseModel, ValidationError as PydanticValidationError, field_validator

import config
from errors import (
    AlreadyHosted, CannotStart, GameAlreadyStarted, InvalidMessage, InvalidName,
    InvalidPin, NameTaken, NotAllowed, SessionFull, ValidationError,
)
from phase_controller import PhaseController
from question_bank import LABELS, QuestionBank, _sanitize_text, get_question_bank
from session import GameSession, Phase

logger = logging.getLogger(__name__)


class JoinRequest(BaseModel):
    name: str = ""
    pin: str = ""

    @field_validator('name', 'pin', mode='before')
    @classmethod
    def coerce_to_str(cls, v) -> str:
        if v is None:
            return ""
        if isinstance(v, (int, float, str)):
            return str(v)
        raise ValueError('must be a string')


class AnswerRequest(BaseModel):
    answer: str
    time_taken: Optional[float] = None  # client-reported, informational only


class ConnectionGateway:
    """Maps connections to roles, validates actions and multicasts results.

    Connections are registered with a *sink*: any object with a synchronous
    ``send(message)``. Sending never blocks, so every handler runs to
    completion without yielding to the event loop.
    """

    def __init__(self, question_bank: Optional[QuestionBank] = None, pin: str = "",
                 time_limit_ms: int = 0, scheduler=None,
                 clock: Optional[Callable[[], float]] = None,
                 scoring_formula: str = "", host_policy: str = "", name_match: str = "",
                 deadline_buffer_ms: Optional[int] = None,
                 reveal_grace_ms: Optional[int] = None,
                 max_players: Optional[int] = None):
        self.session = GameSession(question_bank or get_question_bank(), pin=pin,
                                   time_limit_ms=time_limit_ms, name_match=name_match)
        self.controller = PhaseController(
            self.session, self, scheduler=scheduler, clock=clock,
            scoring_formula=scoring_formula,
            deadline_buffer_ms=deadline_buffer_ms,
            reveal_grace_ms=reveal_grace_ms,
        )
        self.host_policy = host_policy or config.HOST_POLICY
        self.max_players = config.MAX_PLAYERS if max_players is None else max_players
        self.sinks: Dict[str, object] = {}
        self._handlers = {
            "HOST_CONNECT": self._handle_host_connect,
            "START_GAME": self._handle_start_game,
            "NEXT_QUESTION": self._handle_next_question,
            "JOIN": self._handle_join,
            "ANSWER": self._handle_answer,
        }

    # --- connection registry ---

    def register(self, connection_id: str, sink):
        self.sinks[connection_id] = sink

    def unregister(self, connection_id: str):
        self.sinks.pop(connection_id, None)

    # --- outbound ---

    def send_to(self, connection_id: str, message: dict):
        sink = self.sinks.get(connection_id)
        if sink is None:
            logger.debug("Dropping %s for unknown connection %s", message.get("type"), connection_id)
            return
        sink.send(message)

    def send_to_host(self, message: dict):
        if self.session.host_id:
            self.send_to(self.session.host_id, message)

    def broadcast_to_players(self, message: dict):
        for connection_id in list(self.session.players):
            self.send_to(connection_id, message)

    def reject(self, connection_id: str, error: ValidationError, message_type: str = "ACTION_REJECTED"):
        logger.info("Rejected %s from %s: %s", message_type, connection_id, error.code)
        self.send_to(connection_id, {"type": message_type, **error.to_payload()})

    # --- operations ---

    def attach_host(self, connection_id: str):
        session = self.session
        if session.is_player(connection_id):
            raise NotAllowed("Players cannot host the game.")
        if session.host_id is not None:
            if self.host_policy == "reject" or session.is_host(connection_id):
                raise AlreadyHosted()
            previous = session.host_id
            self.send_to(previous, {"type": "HOST_REPLACED", "message": "Another host took over the game."})
            logger.warning("Host %s replaced by %s", previous, connection_id)
            self.controller.host_lost()

        self.controller.cancel_timers()
        removed = session.reset_for_new_host(connection_id)
        for cid in removed:
            self.send_to(cid, {"type": "SESSION_RESET", "message": "A new game is starting. Please join again."})
        logger.info("Host connected with ID: %s", connection_id)

        self.send_to(connection_id, {
            "type": "HOST_READY",
            "pin": session.pin,
            "total_questions": session.total_questions,
            "time_limit": session.time_limit_ms,
        })
        self.send_to(connection_id, self.controller.leaderboard_message())

    def join_player(self, connection_id: str, name: str, pin: str) -> dict:
        session = self.session
        if session.is_player(connection_id) or session.is_host(connection_id):
            raise NotAllowed("You have already joined.")
        if str(pin).strip() != session.pin:
            raise InvalidPin()
        if session.phase == Phase.IDLE:
            raise GameAlreadyStarted("No game is open yet. Wait for the host.")
        if session.phase != Phase.AWAITING_PLAYERS:
            raise GameAlreadyStarted()

        # Sanitize: strip HTML tags and control characters, then bound for display
        name = _sanitize_text(name)[:config.MAX_NAME_LENGTH].strip()
        if not name:
            raise InvalidName()
        if len(session.players) >= self.max_players:
            raise SessionFull()
        if session.find_player_by_name(name) is not None:
            raise NameTaken()

        player = session.add_player(connection_id, name)
        logger.info("Player joined: %s (%s)", name, connection_id)
        self.send_to(connection_id, {"type": "JOIN_SUCCESS", "name": name, "pin": session.pin, "score": 0})
        self.controller.broadcast_leaderboard()
        return player

    def start_game(self, connection_id: str):
        session = self.session
        if (not session.is_host(connection_id)
                or session.phase != Phase.AWAITING_PLAYERS
                or not session.players):
            raise CannotStart()
        logger.info("Game started with %d players", len(session.players))
        self.controller.start_question()

    def advance_question(self, connection_id: str):
        session = self.session
        if (not session.is_host(connection_id)
                or session.phase != Phase.REVEALING_RESULTS
                or not session.ready_for_next):
            raise NotAllowed()
        self.controller.advance()

    def submit_answer(self, connection_id: str, label: str,
                      client_elapsed_ms: Optional[float] = None) -> bool:
        """Record a player's answer. Anything out of turn is ignored, not rejected."""
        session = self.session
        if (not session.is_player(connection_id)
                or session.phase != Phase.QUESTION_ACTIVE
                or session.has_answered(connection_id)):
            return False
        label = label.strip().upper()
        if label not in LABELS:
            logger.debug("Ignoring invalid label %r from %s", label, connection_id)
            return False

        elapsed = max(0.0, self.controller.clock() - session.question_started_at)
        if not session.record_answer(connection_id, label, elapsed):
            return False
        logger.info("Answer received from %s: %s in %dms (client reported %s)",
                    session.players[connection_id]["name"], label, elapsed, client_elapsed_ms)

        self.send_to_host({
            "type": "ANSWER_COUNT",
            "answered": len(session.answers),
            "total": len(session.players),
        })
        self.controller.check_full_participation()
        return True

    def disconnect(self, connection_id: str):
        session = self.session
        self.unregister(connection_id)
        if session.is_host(connection_id):
            self.controller.host_lost()
            return
        player = session.remove_player(connection_id)
        if player is None:
            return
        logger.info("Player disconnected: %s", player["name"])
        # A departure can complete the answer set mid-question
        if not self.controller.check_full_participation():
            self.controller.broadcast_leaderboard()

    # --- inbound dispatch ---

    def handle_message(self, connection_id: str, message: dict):
        msg_type = message.get("type")
        if not isinstance(msg_type, str):
            self.reject(connection_id, InvalidMessage("Message type must be a string"))
            return
        handler = self._handlers.get(msg_type)
        if handler is None:
            self.reject(connection_id, InvalidMessage(f"Unknown message type: {msg_type}"))
            return
        try:
            handler(connection_id, message)
        except ValidationError as exc:
            self.reject(connection_id, exc)

    def _handle_host_connect(self, connection_id: str, message: dict):
        self.attach_host(connection_id)

    def _handle_start_game(self, connection_id: str, message: dict):
        self.start_game(connection_id)

    def _handle_next_question(self, connection_id: str, message: dict):
        self.advance_question(connection_id)

    def _handle_join(self, connection_id: str, message: dict):
        try:
            request = JoinRequest.model_validate(message)
            self.join_player(connection_id, request.name, request.pin)
        except PydanticValidationError:
            self.reject(connection_id, InvalidMessage(), "JOIN_REJECTED")
        except ValidationError as exc:
            self.reject(connection_id, exc, "JOIN_REJECTED")

    def _handle_answer(self, connection_id: str, message: dict):
        try:
            request = AnswerRequest.model_validate(message)
        except PydanticValidationError:
            logger.debug("Ignoring malformed answer from %s", connection_id)
            return
        self.submit_answer(connection_id, request.answer, request.time_taken)
