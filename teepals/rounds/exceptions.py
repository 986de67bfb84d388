"""Custom exceptions for the rounds service."""

from fastapi import HTTPException, status


class RoundServiceError(Exception):
    """Base exception for round coordinator errors."""

    def __init__(self, message: str, error_type: str = "round_service_error"):
        self.message = message
        self.error_type = error_type
        super().__init__(message)


class RoundNotFoundError(RoundServiceError):
    """Raised when a round is not found."""

    def __init__(self, round_id: str):
        super().__init__(
            f"Round '{round_id}' not found",
            "round_not_found",
        )
        self.round_id = round_id


class InvalidRoundError(RoundServiceError):
    """Raised when round attributes fail validation."""

    def __init__(self, message: str):
        super().__init__(message, "invalid_round")


class NotHostError(RoundServiceError):
    """Raised when a host-only operation is attempted by someone else."""

    def __init__(self, uid: str, action: str):
        super().__init__(
            f"User {uid} is not the host and cannot {action}",
            "not_host",
        )
        self.uid = uid
        self.action = action


class RoundTerminalError(RoundServiceError):
    """Raised when a canceled or completed round is mutated."""

    def __init__(self, round_id: str, round_status: str):
        super().__init__(
            f"Round '{round_id}' is {round_status} and cannot be modified",
            "round_terminal",
        )
        self.round_id = round_id
        self.round_status = round_status


class RoundFullError(RoundServiceError):
    """Raised when no seat is left in a round."""

    def __init__(self, round_id: str, max_players: int):
        super().__init__(
            f"Round '{round_id}' is full (max {max_players} players)",
            "round_full",
        )
        self.round_id = round_id
        self.max_players = max_players


class InvalidTransitionError(RoundServiceError):
    """Raised when a membership transition is not legal from the current status."""

    def __init__(self, current_status: str | None, operation: str, reason: str | None = None):
        current = current_status or "none"
        message = f"Cannot {operation} from membership status '{current}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, "invalid_transition")
        self.current_status = current_status
        self.operation = operation


class AlreadyHostError(RoundServiceError):
    """Raised when a membership operation targets the round host."""

    def __init__(self, uid: str):
        super().__init__(
            f"User {uid} hosts this round and is always a member",
            "already_host",
        )
        self.uid = uid


class ProfileIncompleteError(RoundServiceError):
    """Raised when the acting user has not completed the minimum profile."""

    def __init__(self, uid: str):
        super().__init__(
            f"User {uid} must complete their profile first",
            "profile_incomplete",
        )
        self.uid = uid


class NotAllowedError(RoundServiceError):
    """Raised when a friends-only round is joined by a non-friend of the host."""

    def __init__(self, uid: str, round_id: str):
        super().__init__(
            f"User {uid} is not allowed to join friends-only round '{round_id}'",
            "not_allowed",
        )
        self.uid = uid
        self.round_id = round_id


class CapacityBelowAcceptedError(RoundServiceError):
    """Raised when a capacity edit would drop below the accepted count."""

    def __init__(self, requested: int, accepted: int):
        super().__init__(
            f"Cannot reduce max players to {requested}: {accepted} players already accepted",
            "capacity_below_accepted",
        )
        self.requested = requested
        self.accepted = accepted


class TransientFailureError(RoundServiceError):
    """Raised when storage fails mid-operation; safe to retry."""

    def __init__(self, message: str = "Temporary failure, please retry"):
        super().__init__(message, "transient_failure")


def raise_http_exception(error: RoundServiceError) -> None:
    """Convert RoundServiceError to HTTPException."""
    status_map = {
        "round_not_found": status.HTTP_404_NOT_FOUND,
        "invalid_round": 422,
        "not_host": status.HTTP_403_FORBIDDEN,
        "round_terminal": status.HTTP_409_CONFLICT,
        "round_full": status.HTTP_409_CONFLICT,
        "invalid_transition": status.HTTP_409_CONFLICT,
        "already_host": status.HTTP_400_BAD_REQUEST,
        "profile_incomplete": status.HTTP_403_FORBIDDEN,
        "not_allowed": status.HTTP_403_FORBIDDEN,
        "capacity_below_accepted": status.HTTP_409_CONFLICT,
        "transient_failure": status.HTTP_503_SERVICE_UNAVAILABLE,
        "round_service_error": status.HTTP_500_INTERNAL_SERVER_ERROR,
    }

    raise HTTPException(
        status_code=status_map.get(error.error_type, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail={
            "type": f"https://api.teepals.app/errors/{error.error_type}",
            "title": error.error_type.replace("_", " ").title(),
            "status": status_map.get(error.error_type, 500),
            "detail": error.message,
        },
    )
