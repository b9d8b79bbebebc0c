"""
Snapshot Record Models
======================

Pydantic models for every record the indexer writes to the snapshot store.

Column names are the snake_case field names below. Nested collections
(projects, voters, score breakdowns) are typed sub-models and are converted
explicitly at the store boundary via to_row() / from_row(), never parsed
ad-hoc on read.
"""

from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field


class LifecycleState(str, Enum):
    """Voting round lifecycle, derived from raw contract flags"""

    DEPLOYED = "deployed"
    ACTIVATED = "activated"
    ACTIVE = "active"
    ENDED = "ended"
    LOCKED = "locked"


class VotingMode(IntEnum):
    """Tally algorithm selected for a round (matches JurySC.VotingMode)"""

    CONSENSUS = 0
    WEIGHTED = 1


class CertStatus(str, Enum):
    PENDING = "pending"
    REQUESTED = "requested"
    MINTED = "minted"
    CANCELLED = "cancelled"


# Statuses that can still change without a new token being minted
NON_FINAL_CERT_STATUSES = (CertStatus.PENDING, CertStatus.REQUESTED, CertStatus.CANCELLED)


class MemberStatus(str, Enum):
    PROPOSED = "proposed"
    APPROVED = "approved"
    REJECTED = "rejected"


class _Record(BaseModel):
    """Base for store records: explicit row (de)serialization"""

    def to_row(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_row(cls, row: Dict[str, Any]):
        return cls.model_validate(row)


# ============================================================
# Round snapshots
# ============================================================

class WinnerInfo(BaseModel):
    address: Optional[str] = None
    has_winner: bool = False


class EntityVotes(BaseModel):
    """Effective vote of each entity (project address or None)"""

    dev_rel: Optional[str] = None
    dao_hic: Optional[str] = None
    community: Optional[str] = None


class ParticipationCounts(BaseModel):
    dev_rel: int = 0
    dao_hic: int = 0
    community: int = 0


class ProjectScores(BaseModel):
    """Per-project weighted scores (uint256 values kept as decimal strings)"""

    addresses: List[str]
    scores: List[str]
    total_possible: str


class ProjectEntry(BaseModel):
    address: str
    metadata_cid: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class RoundSnapshot(_Record):
    """Derived state of one voting round at the last successful poll"""

    network_id: int
    iteration_id: int
    round_id: int
    registry_address: str
    pob_address: Optional[str] = None
    jury_address: Optional[str] = None
    deploy_block_hint: int = 0
    lifecycle_state: LifecycleState = LifecycleState.DEPLOYED
    window_start: Optional[int] = None
    window_end: Optional[int] = None
    voting_mode: VotingMode = VotingMode.CONSENSUS
    projects_locked: bool = False
    fully_locked: bool = False
    winner: WinnerInfo = Field(default_factory=WinnerInfo)
    entity_votes: EntityVotes = Field(default_factory=EntityVotes)
    participation_counts: ParticipationCounts = Field(default_factory=ParticipationCounts)
    scores: Optional[ProjectScores] = None
    dev_rel_account: Optional[str] = None
    dao_hic_voters: List[str] = Field(default_factory=list)
    dao_hic_individual_votes: Dict[str, str] = Field(default_factory=dict)
    projects: List[ProjectEntry] = Field(default_factory=list)
    last_observed_block: int = 0
    last_updated_at: int = 0  # unix ms

    @property
    def key(self) -> Tuple[int, int, int]:
        return (self.network_id, self.iteration_id, self.round_id)

    def same_state(self, other: "RoundSnapshot") -> bool:
        """True if both snapshots are identical apart from last_updated_at"""
        exclude = {"last_updated_at"}
        return self.model_dump(exclude=exclude) == other.model_dump(exclude=exclude)


# ============================================================
# Certificates, rosters, eligibility, profiles
# ============================================================

class CertRecord(_Record):
    network_id: int
    cert_contract: str
    token_id: int
    iteration_id: int
    account: str
    cert_type: str
    info_cid: Optional[str] = None
    status: CertStatus
    request_time: int = 0
    middleware_address: Optional[str] = None
    template_cid: Optional[str] = None
    last_updated_at: int = 0

    @property
    def key(self) -> Tuple[int, int]:
        return (self.network_id, self.token_id)


class TeamMembership(_Record):
    network_id: int
    iteration_id: int
    project_address: str
    member_address: str
    status: MemberStatus
    full_name: str = ""
    last_updated_at: int = 0

    @property
    def key(self) -> Tuple[int, int, str, str]:
        return (
            self.network_id,
            self.iteration_id,
            self.project_address.lower(),
            self.member_address.lower(),
        )


class EligibilityRecord(_Record):
    network_id: int
    iteration_id: int
    account: str
    eligible: bool
    cert_type: str = ""
    is_project: bool = False
    has_named_team_members: bool = False
    last_updated_at: int = 0

    @property
    def key(self) -> Tuple[int, int, str]:
        return (self.network_id, self.iteration_id, self.account.lower())


class ProfileRecord(_Record):
    network_id: int
    account: str
    picture_cid: str = ""
    bio_cid: str = ""
    last_updated_at: int = 0

    @property
    def key(self) -> Tuple[int, str]:
        return (self.network_id, self.account.lower())


# ============================================================
# Bookkeeping
# ============================================================

class RetryRecord(_Record):
    namespace: str
    operation: str
    key: str
    attempt_count: int
    last_attempt_at: float
    next_retry_at: float
    last_error: Optional[str] = None


class ContentCacheEntry(_Record):
    content_id: str
    raw_content: str
    fetched_at: int


class ScanCheckpoint(_Record):
    network_id: int
    source_ref: str
    next_block_to_scan: int
