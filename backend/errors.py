"""Rejections surfaced to the connection that caused them.

Every ``ValidationError`` is recovered by the gateway and turned into a
``JOIN_REJECTED`` or ``ACTION_REJECTED`` message; none of them ends the
session or the connection.
"""


class GameError(Exception):
    code = "ERROR"
    default_message = "Something went wrong."

    def __init__(self, message: str = ""):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_payload(self) -> dict:
        return {"reason": self.code, "message": self.message}


class ValidationError(GameError):
    code = "VALIDATION_ERROR"
    default_message = "Request rejected."


class InvalidPin(ValidationError):
    code = "INVALID_PIN"
    default_message = "Invalid game PIN."


class GameAlreadyStarted(ValidationError):
    code = "GAME_ALREADY_STARTED"
    default_message = "The game has already started."


class NameTaken(ValidationError):
    code = "NAME_TAKEN"
    default_message = "Name is already taken. Try a different one."


class InvalidName(ValidationError):
    code = "INVALID_NAME"
    default_message = "Name must contain at least one visible character."


class SessionFull(ValidationError):
    code = "SESSION_FULL"
    default_message = "The game is full."


class AlreadyHosted(ValidationError):
    code = "ALREADY_HOSTED"
    default_message = "A host is already connected."


class CannotStart(ValidationError):
    code = "CANNOT_START"
    default_message = "Cannot start game."


class NotAllowed(ValidationError):
    code = "NOT_ALLOWED"
    default_message = "Not the time to move to the next question."


class InvalidMessage(ValidationError):
    code = "INVALID_MESSAGE"
    default_message = "Invalid message format."


class RateLimited(ValidationError):
    code = "RATE_LIMITED"
    default_message = "Too many messages."


class QuestionBankError(Exception):
    """Raised when a question bank file cannot be loaded."""
