from __future__ import annotations


class RelayError(RuntimeError):
    code = "RELAY_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class NotFoundError(RelayError):
    code = "NOT_FOUND"


class PreconditionError(RelayError):
    code = "PRECONDITION_FAILED"


class ProtocolError(RelayError):
    code = "INVALID_MESSAGE"


class SettlementError(RelayError):
    code = "SETTLEMENT_FAILED"


def room_not_found(message: str = "Room not found") -> NotFoundError:
    return NotFoundError(message, "ROOM_NOT_FOUND")


def player_not_in_room(message: str = "Player not in room") -> NotFoundError:
    return NotFoundError(message, "PLAYER_NOT_IN_ROOM")


def battle_not_found() -> NotFoundError:
    return NotFoundError("Battle not found", "BATTLE_NOT_FOUND")


def not_in_battle() -> NotFoundError:
    return NotFoundError("Player not in this battle", "NOT_IN_BATTLE")
