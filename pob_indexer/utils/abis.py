"""
Minimal contract ABIs for the read surface the indexers use.

Only view functions and the two middleware role events are described.
"""

from typing import Dict, List, Sequence, Tuple, Union

_Param = Union[str, Tuple[str, str], Tuple[str, str, List]]


def _param(param: _Param, index: int) -> Dict:
    if isinstance(param, str):
        return {"name": f"arg{index}", "type": param}
    name, type_ = param[0], param[1]
    entry = {"name": name, "type": type_}
    if len(param) > 2:
        entry["components"] = [_param(c, i) for i, c in enumerate(param[2])]
    return entry


def _view(name: str, inputs: Sequence[_Param] = (), outputs: Sequence[_Param] = ()) -> Dict:
    return {
        "type": "function",
        "name": name,
        "stateMutability": "view",
        "inputs": [_param(p, i) for i, p in enumerate(inputs)],
        "outputs": [_param(p, i) for i, p in enumerate(outputs)],
    }


def _event(name: str, inputs: Sequence[Tuple[str, str, bool]]) -> Dict:
    return {
        "type": "event",
        "name": name,
        "anonymous": False,
        "inputs": [{"name": n, "type": t, "indexed": indexed} for n, t, indexed in inputs],
    }


_ROUND_COMPONENTS = [
    ("iterationId", "uint256"),
    ("roundId", "uint256"),
    ("jurySC", "address"),
    ("deployBlockHint", "uint256"),
    ("exists", "bool"),
]

REGISTRY_ABI = [
    _view("getAllIterationIds", outputs=["uint256[]"]),
    _view("getRounds", ["uint256"], [("rounds", "tuple[]", _ROUND_COMPONENTS)]),
    _view("batchGetProjectMetadata", ["uint256", "address", "address[]"], ["string[]"]),
    _view("getProjectMetadata", ["uint256", "address", "address"], ["string"]),
    _view("votingModeOverride", ["address"], ["uint8"]),
    _view("profilePictureCID", ["address"], ["string"]),
    _view("profileBioCID", ["address"], ["string"]),
]

JURY_ABI = [
    _view("pob", outputs=["address"]),
    _view("votingMode", outputs=["uint8"]),
    _view("isActive", outputs=["bool"]),
    _view("votingEnded", outputs=["bool"]),
    _view("startTime", outputs=["uint64"]),
    _view("endTime", outputs=["uint64"]),
    _view("projectsLocked", outputs=["bool"]),
    _view("locked", outputs=["bool"]),
    _view("devRelAccount", outputs=["address"]),
    _view("getDaoHicVoters", outputs=["address[]"]),
    _view("daoHicVoteOf", ["address"], ["address"]),
    _view("getDevRelEntityVote", outputs=["address"]),
    _view("getDaoHicEntityVote", outputs=["address"]),
    _view("getCommunityEntityVote", outputs=["address"]),
    _view("getVoteParticipationCounts", outputs=["uint256", "uint256", "uint256"]),
    _view("getWinner", outputs=["address", "bool"]),
    _view("getWinnerConsensus", outputs=["address", "bool"]),
    _view("getWinnerWeighted", outputs=["address", "bool"]),
    _view("getWinnerWithScores", outputs=["address[]", "uint256[]", "uint256"]),
    _view("projectCount", outputs=["uint256"]),
    _view("projectAddress", ["uint256"], ["address"]),
]

CERT_NFT_ABI = [
    _view("nextTokenId", outputs=["uint256"]),
    _view(
        "certs",
        ["uint256"],
        [
            ("iteration", "uint256"),
            ("account", "address"),
            ("certType", "string"),
            ("infoCID", "string"),
            ("status", "uint8"),
            ("requestTime", "uint256"),
        ],
    ),
    _view("certStatus", ["uint256"], ["uint8"]),
    _view("middleware", ["uint256"], ["address"]),
    _view("getTeamMemberCount", ["uint256", "address"], ["uint256"]),
    _view(
        "getTeamMember",
        ["uint256", "address", "uint256"],
        [("memberAddress", "address"), ("status", "uint8"), ("fullName", "string")],
    ),
    _view("hasNamedTeamMembers", ["uint256", "address"], ["bool"]),
]

MIDDLEWARE_ABI = [
    _view("templateCID", outputs=["string"]),
    _view("validate", ["address"], [("eligible", "bool"), ("certType", "string")]),
    _view("isProjectInAnyRound", ["address"], ["bool"]),
    _event("RoleRegistered", [("account", "address", True), ("role", "string", False)]),
    _event("RoleRemoved", [("account", "address", True)]),
]

ABIS = {
    "registry": REGISTRY_ABI,
    "jury": JURY_ABI,
    "cert_nft": CERT_NFT_ABI,
    "middleware": MIDDLEWARE_ABI,
}

# Event signatures (topic0 is keccak of these)
EVENT_SIGNATURES = {
    "RoleRegistered": "RoleRegistered(address,string)",
    "RoleRemoved": "RoleRemoved(address)",
}
