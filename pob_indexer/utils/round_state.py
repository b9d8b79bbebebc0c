"""
Round lifecycle and voting-mode derivation.

Both are pure functions of raw contract flags so the same reads always
derive the same state.
"""

from typing import List, Optional

from pob_indexer.models.records import LifecycleState, VotingMode


def derive_lifecycle(
    fully_locked: bool,
    voting_ended: bool,
    is_active: bool,
    window_start: Optional[int],
) -> LifecycleState:
    """First matching rule wins: locked, ended, active, activated, deployed"""
    if fully_locked:
        return LifecycleState.LOCKED
    if voting_ended:
        return LifecycleState.ENDED
    if is_active:
        return LifecycleState.ACTIVE
    if window_start and window_start > 0:
        return LifecycleState.ACTIVATED
    return LifecycleState.DEPLOYED


def resolve_voting_mode(override_raw: Optional[int], contract_mode: Optional[int]) -> VotingMode:
    """
    Effective voting mode for a round.

    The registry override stores mode + 1 (0 means "no override") and takes
    strict precedence over the jury contract's own votingMode().
    Unknown values fall back to CONSENSUS.
    """
    if override_raw:
        candidate = int(override_raw) - 1
    elif contract_mode is not None:
        candidate = int(contract_mode)
    else:
        candidate = VotingMode.CONSENSUS

    try:
        return VotingMode(candidate)
    except ValueError:
        return VotingMode.CONSENSUS


def tally_functions(mode: VotingMode) -> List[str]:
    """Jury tally calls to try, in order, for a mode"""
    if mode == VotingMode.WEIGHTED:
        return ["getWinnerWeighted"]
    # getWinner is the pre-dual-mode name of the consensus tally
    return ["getWinnerConsensus", "getWinner"]
