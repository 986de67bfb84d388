"""Tests for round errors and their HTTP mapping."""

import warnings

import pytest
from fastapi import HTTPException

from teepals.rounds.exceptions import (
    AlreadyHostError,
    CapacityBelowAcceptedError,
    InvalidRoundError,
    InvalidTransitionError,
    NotAllowedError,
    NotHostError,
    ProfileIncompleteError,
    RoundFullError,
    RoundNotFoundError,
    RoundServiceError,
    RoundTerminalError,
    TransientFailureError,
    raise_http_exception,
)


@pytest.mark.parametrize(
    "error,status_code",
    [
        (RoundNotFoundError("r1"), 404),
        (InvalidRoundError("bad"), 422),
        (NotHostError("u1", "cancel the round"), 403),
        (RoundTerminalError("r1", "canceled"), 409),
        (RoundFullError("r1", 4), 409),
        (InvalidTransitionError("accepted", "accept_member"), 409),
        (AlreadyHostError("u1"), 400),
        (ProfileIncompleteError("u1"), 403),
        (NotAllowedError("u1", "r1"), 403),
        (CapacityBelowAcceptedError(2, 3), 409),
        (TransientFailureError(), 503),
        (RoundServiceError("unexpected"), 500),
    ],
)
def test_status_mapping(error, status_code):
    with pytest.raises(HTTPException) as exc_info:
        raise_http_exception(error)
    assert exc_info.value.status_code == status_code
    assert exc_info.value.detail["status"] == status_code
    assert exc_info.value.detail["type"].endswith(error.error_type)
    assert exc_info.value.detail["detail"] == error.message


def test_all_errors_share_base():
    assert issubclass(RoundFullError, RoundServiceError)
    assert issubclass(TransientFailureError, RoundServiceError)


def test_invalid_transition_reason_in_message():
    error = InvalidTransitionError(None, "join_instant", "round join policy is 'approval'")
    assert error.message == "Cannot join_instant from membership status 'none': round join policy is 'approval'"


def test_capacity_error_carries_counts():
    error = CapacityBelowAcceptedError(2, 3)
    assert error.requested == 2
    assert error.accepted == 3
    assert "3 players already accepted" in error.message


def test_invalid_round_mapping_emits_no_warnings():
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        with pytest.raises(HTTPException) as exc_info:
            raise_http_exception(InvalidRoundError("bad"))
    assert exc_info.value.status_code == 422
