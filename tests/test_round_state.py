import itertools

import pytest

from pob_indexer.models.records import LifecycleState, VotingMode
from pob_indexer.utils.round_state import derive_lifecycle, resolve_voting_mode, tally_functions


def _expected(locked, ended, active, started):
    if locked:
        return LifecycleState.LOCKED
    if ended:
        return LifecycleState.ENDED
    if active:
        return LifecycleState.ACTIVE
    if started:
        return LifecycleState.ACTIVATED
    return LifecycleState.DEPLOYED


@pytest.mark.parametrize("locked,ended,active,started", list(itertools.product([False, True], repeat=4)))
def test_lifecycle_priority(locked, ended, active, started):
    window_start = 1_700_000_000 if started else 0
    assert derive_lifecycle(locked, ended, active, window_start) == _expected(locked, ended, active, started)


def test_ended_beats_active():
    assert derive_lifecycle(False, True, True, 1) == LifecycleState.ENDED


def test_missing_window_start_is_deployed():
    assert derive_lifecycle(False, False, False, None) == LifecycleState.DEPLOYED


def test_override_takes_precedence():
    # Override stores mode + 1
    assert resolve_voting_mode(2, VotingMode.CONSENSUS) == VotingMode.WEIGHTED
    assert resolve_voting_mode(1, VotingMode.WEIGHTED) == VotingMode.CONSENSUS


def test_no_override_uses_contract_mode():
    assert resolve_voting_mode(0, 1) == VotingMode.WEIGHTED
    assert resolve_voting_mode(0, 0) == VotingMode.CONSENSUS
    assert resolve_voting_mode(0, None) == VotingMode.CONSENSUS


def test_unknown_mode_falls_back_to_consensus():
    assert resolve_voting_mode(9, None) == VotingMode.CONSENSUS
    assert resolve_voting_mode(0, 7) == VotingMode.CONSENSUS


def test_tally_functions_are_mode_correct():
    assert tally_functions(VotingMode.WEIGHTED) == ["getWinnerWeighted"]
    assert tally_functions(VotingMode.CONSENSUS) == ["getWinnerConsensus", "getWinner"]
