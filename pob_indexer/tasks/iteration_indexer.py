"""
Iteration Snapshot Indexer
==========================

Mirrors every voting round registered in each network's PoB registry into
RoundSnapshot records.

Per tick, per network (networks run concurrently):
1. Check the registry has code (missing deployment → skip network)
2. getAllIterationIds() → getRounds(iterationId) for each iteration
3. Per round:
   - registry votingModeOverride(jury) and jury votingMode() (every tick)
   - fan out the raw flag/vote/tally reads concurrently
   - weighted + voting ended → best-effort getWinnerWithScores()
   - individual daoHic votes
   - projects 1..projectCount(), metadata CIDs via batchGetProjectMetadata,
     metadata through ContentCache
4. Derive lifecycle + tally, upsert (skipped if nothing changed)

Reads that fail TRANSIENT keep the previously stored value of that field.
Reads that are NOT_SUPPORTED use the field's documented default.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional

from pob_indexer.db.store import SnapshotStore
from pob_indexer.models.records import (
    EntityVotes,
    LifecycleState,
    ParticipationCounts,
    ProjectEntry,
    ProjectScores,
    RoundSnapshot,
    VotingMode,
    WinnerInfo,
)
from pob_indexer.utils.chain_pollers import ChainPollerSet
from pob_indexer.utils.content_cache import ContentCache
from pob_indexer.utils.ledger import LedgerReader, ReadResult, normalize_address
from pob_indexer.utils.networks import NetworkConfig
from pob_indexer.utils.round_state import derive_lifecycle, resolve_voting_mode, tally_functions
from pob_indexer.utils.tally import consensus_winner, strict_max_winner

logger = logging.getLogger(__name__)


def _carry(result: ReadResult, previous: Optional[RoundSnapshot], getter, default, convert=None):
    """Fresh value if read, previous value on a transient failure, else the default"""
    if result.ok:
        return convert(result.value) if convert else result.value
    if result.is_transient and previous is not None:
        return getter(previous)
    return default


def _winner(value) -> WinnerInfo:
    address, has_winner = value[0], bool(value[1])
    address = normalize_address(address)
    return WinnerInfo(address=address if has_winner else None, has_winner=has_winner and address is not None)


def _scores(value) -> ProjectScores:
    addresses, scores, total_possible = value
    return ProjectScores(
        addresses=[a.lower() for a in addresses],
        scores=[str(int(s)) for s in scores],
        total_possible=str(int(total_possible)),
    )


class IterationSnapshotIndexer:
    def __init__(
        self,
        store: SnapshotStore,
        pollers: ChainPollerSet,
        content_cache: ContentCache,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.pollers = pollers
        self.content_cache = content_cache
        self.clock = clock

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    # ════════════════════════════════════════════════════════════════
    # Tick
    # ════════════════════════════════════════════════════════════════

    async def run_tick(self) -> Dict[int, int]:
        """
        Index all networks with a registry.

        Returns:
            {chain_id: rounds indexed this tick}
        """
        networks = self.pollers.active_networks("iteration")
        results = await asyncio.gather(
            *(self.index_network(network) for network in networks),
            return_exceptions=True,
        )

        summary = {}
        for network, result in zip(networks, results):
            if isinstance(result, Exception):
                logger.error(f"❌ Iteration indexing failed for chain {network.chain_id}: {result}")
                summary[network.chain_id] = 0
            else:
                summary[network.chain_id] = result
        return summary

    async def index_network(self, network: NetworkConfig) -> int:
        reader = self.pollers.reader(network.chain_id)
        registry = network.registry_address

        code = await reader.has_code(registry)
        if not code.ok:
            logger.warning(f"⚠️  Chain {network.chain_id}: registry unreachable, skipping tick ({code.detail})")
            return 0
        if not code.value:
            logger.warning(f"⚠️  Chain {network.chain_id}: no contract code at registry {registry}, skipping")
            return 0

        ids = await reader.call(registry, "registry", "getAllIterationIds")
        if not ids.ok:
            logger.warning(f"⚠️  Chain {network.chain_id}: could not list iterations ({ids.detail})")
            return 0

        indexed = 0
        for iteration_id in ids.value:
            iteration_id = int(iteration_id)
            rounds = await reader.call(registry, "registry", "getRounds", iteration_id)
            if not rounds.ok:
                logger.warning(
                    f"⚠️  Chain {network.chain_id}: could not list rounds for iteration {iteration_id} ({rounds.detail})"
                )
                continue

            existing = [r for r in rounds.value if r[4]]
            if not existing:
                await self._index_roundless_iteration(network, reader, iteration_id)
                continue

            for round_info in existing:
                round_id, jury, deploy_block_hint = int(round_info[1]), round_info[2], int(round_info[3])
                try:
                    if await self.index_round(network, reader, iteration_id, round_id, jury, deploy_block_hint):
                        indexed += 1
                except Exception as e:
                    logger.error(
                        f"❌ Chain {network.chain_id}: failed to index iteration {iteration_id} "
                        f"round {round_id}: {e}"
                    )

        logger.debug(f"Chain {network.chain_id}: {indexed} round(s) indexed")
        return indexed

    # ════════════════════════════════════════════════════════════════
    # Single round
    # ════════════════════════════════════════════════════════════════

    async def index_round(
        self,
        network: NetworkConfig,
        reader: LedgerReader,
        iteration_id: int,
        round_id: int,
        jury: str,
        deploy_block_hint: int = 0,
    ) -> bool:
        """
        Read, derive and store one round.

        Returns:
            True if the round was read (whether or not anything changed)
        """
        chain_id = network.chain_id
        registry = network.registry_address
        previous = await asyncio.to_thread(self.store.get_round_snapshot, chain_id, iteration_id, round_id)

        code = await reader.has_code(jury)
        if code.ok and not code.value:
            logger.warning(f"⚠️  Chain {chain_id}: no contract code at jury {jury}, skipping round {round_id}")
            return False

        # Mode override is re-read every tick
        override, contract_mode = await asyncio.gather(
            reader.call(registry, "registry", "votingModeOverride", jury),
            reader.call(jury, "jury", "votingMode"),
        )
        mode = self._resolve_mode(override, contract_mode, previous)

        names = [
            "pob", "isActive", "votingEnded", "startTime", "endTime", "projectsLocked", "locked",
            "devRelAccount", "getDaoHicVoters", "getDevRelEntityVote", "getDaoHicEntityVote",
            "getCommunityEntityVote", "getVoteParticipationCounts",
        ]
        results = await asyncio.gather(
            *(reader.call(jury, "jury", name) for name in names),
            reader.block_number(),
            self._read_tally(reader, jury, mode),
        )
        r = dict(zip(names, results[:len(names)]))
        block, tally = results[len(names)], results[len(names) + 1]

        p = previous
        is_active = _carry(r["isActive"], p, lambda s: s.lifecycle_state == LifecycleState.ACTIVE, False, bool)
        voting_ended = _carry(
            r["votingEnded"], p,
            lambda s: s.lifecycle_state in (LifecycleState.ENDED, LifecycleState.LOCKED), False, bool,
        )
        window_start = _carry(r["startTime"], p, lambda s: s.window_start, None, lambda v: int(v) or None)
        window_end = _carry(r["endTime"], p, lambda s: s.window_end, None, lambda v: int(v) or None)
        projects_locked = _carry(r["projectsLocked"], p, lambda s: s.projects_locked, False, bool)
        fully_locked = _carry(r["locked"], p, lambda s: s.fully_locked, False, bool)

        entity_votes = EntityVotes(
            dev_rel=_carry(r["getDevRelEntityVote"], p, lambda s: s.entity_votes.dev_rel, None, normalize_address),
            dao_hic=_carry(r["getDaoHicEntityVote"], p, lambda s: s.entity_votes.dao_hic, None, normalize_address),
            community=_carry(
                r["getCommunityEntityVote"], p, lambda s: s.entity_votes.community, None, normalize_address
            ),
        )
        participation = _carry(
            r["getVoteParticipationCounts"], p, lambda s: s.participation_counts, ParticipationCounts(),
            lambda v: ParticipationCounts(dev_rel=int(v[0]), dao_hic=int(v[1]), community=int(v[2])),
        )
        dao_hic_voters = _carry(
            r["getDaoHicVoters"], p, lambda s: s.dao_hic_voters, [], lambda v: [a.lower() for a in v]
        )

        scores = None
        if mode == VotingMode.WEIGHTED and voting_ended:
            scores_read = await reader.call(jury, "jury", "getWinnerWithScores")
            scores = _carry(scores_read, p, lambda s: s.scores, None, _scores)

        winner = self._derive_winner(tally, mode, entity_votes, scores, previous)

        individual_votes = await self._read_individual_votes(reader, jury, dao_hic_voters, previous)
        projects = await self._read_projects(network, reader, jury, previous)

        # Transient flags already carry their previous value, so a fresh
        # higher-priority flag still wins over a lower one that failed
        lifecycle = derive_lifecycle(fully_locked, voting_ended, is_active, window_start)

        snapshot = RoundSnapshot(
            network_id=chain_id,
            iteration_id=iteration_id,
            round_id=round_id,
            registry_address=registry.lower(),
            pob_address=_carry(r["pob"], p, lambda s: s.pob_address, None, normalize_address),
            jury_address=jury.lower(),
            deploy_block_hint=deploy_block_hint,
            lifecycle_state=lifecycle,
            window_start=window_start,
            window_end=window_end,
            voting_mode=mode,
            projects_locked=projects_locked,
            fully_locked=fully_locked,
            winner=winner,
            entity_votes=entity_votes,
            participation_counts=participation,
            scores=scores,
            dev_rel_account=_carry(r["devRelAccount"], p, lambda s: s.dev_rel_account, None, normalize_address),
            dao_hic_voters=dao_hic_voters,
            dao_hic_individual_votes=individual_votes,
            projects=projects,
            last_observed_block=_carry(block, p, lambda s: s.last_observed_block, 0, int),
            last_updated_at=self._now_ms(),
        )

        await self._store(snapshot, previous)
        return True

    @staticmethod
    def _resolve_mode(override: ReadResult, contract_mode: ReadResult, previous: Optional[RoundSnapshot]) -> VotingMode:
        if override.ok and override.value:
            return resolve_voting_mode(override.value, None)
        if (override.is_transient or contract_mode.is_transient) and previous is not None:
            return previous.voting_mode
        return resolve_voting_mode(override.unwrap_or(0), contract_mode.unwrap_or(None))

    @staticmethod
    async def _read_tally(reader: LedgerReader, jury: str, mode: VotingMode) -> ReadResult:
        """Mode-correct remote tally; legacy names are tried only when unsupported"""
        result = ReadResult.not_supported("no tally function")
        for fn in tally_functions(mode):
            result = await reader.call(jury, "jury", fn)
            if not result.is_not_supported:
                return result
        return result

    @staticmethod
    def _derive_winner(
        tally: ReadResult,
        mode: VotingMode,
        entity_votes: EntityVotes,
        scores: Optional[ProjectScores],
        previous: Optional[RoundSnapshot],
    ) -> WinnerInfo:
        if tally.ok:
            return _winner(tally.value)
        if tally.is_transient:
            return previous.winner if previous is not None else WinnerInfo()

        # Contract has no tally call for this mode: apply the rule locally
        if mode == VotingMode.WEIGHTED:
            if scores is None:
                return WinnerInfo()
            address, has_winner = strict_max_winner(
                {a: int(s) for a, s in zip(scores.addresses, scores.scores)}
            )
        else:
            address, has_winner = consensus_winner(
                [entity_votes.dev_rel, entity_votes.dao_hic, entity_votes.community]
            )
        return WinnerInfo(address=address, has_winner=has_winner)

    @staticmethod
    async def _read_individual_votes(
        reader: LedgerReader,
        jury: str,
        voters: List[str],
        previous: Optional[RoundSnapshot],
    ) -> Dict[str, str]:
        if not voters:
            return {}

        results = await asyncio.gather(*(reader.call(jury, "jury", "daoHicVoteOf", v) for v in voters))
        votes = {}
        for voter, result in zip(voters, results):
            if result.ok:
                project = normalize_address(result.value)
                if project:
                    votes[voter] = project
            elif result.is_transient and previous is not None and voter in previous.dao_hic_individual_votes:
                votes[voter] = previous.dao_hic_individual_votes[voter]
        return votes

    async def _read_projects(
        self,
        network: NetworkConfig,
        reader: LedgerReader,
        jury: str,
        previous: Optional[RoundSnapshot],
    ) -> List[ProjectEntry]:
        previous_projects = previous.projects if previous is not None else []

        count = await reader.call(jury, "jury", "projectCount")
        if count.is_not_supported:
            return []
        if not count.ok:
            return previous_projects

        # Projects are 1-indexed on the jury contract
        reads = await asyncio.gather(
            *(reader.call(jury, "jury", "projectAddress", i) for i in range(1, int(count.value) + 1))
        )
        if not all(read.ok for read in reads):
            logger.warning(
                f"⚠️  Chain {network.chain_id}: partial project list for jury {jury}, keeping previous list"
            )
            if previous is not None:
                return previous_projects
        addresses = [read.value.lower() for read in reads if read.ok]
        if not addresses:
            return []

        previous_cids = {entry.address: entry.metadata_cid for entry in previous_projects}
        cid_read = await reader.call(
            network.registry_address, "registry", "batchGetProjectMetadata", network.chain_id, jury, addresses
        )
        if cid_read.ok:
            cids = [cid or None for cid in cid_read.value]
        elif cid_read.is_transient:
            cids = [previous_cids.get(address) for address in addresses]
        else:
            cids = [None] * len(addresses)

        metadata = await asyncio.gather(*(self.content_cache.get_or_fetch(cid) for cid in cids))
        return [
            ProjectEntry(address=address, metadata_cid=cid, metadata=meta)
            for address, cid, meta in zip(addresses, cids, metadata)
        ]

    # ════════════════════════════════════════════════════════════════
    # Roundless iterations + storage
    # ════════════════════════════════════════════════════════════════

    async def _index_roundless_iteration(self, network: NetworkConfig, reader: LedgerReader, iteration_id: int):
        """Round-0 placeholder so registered iterations without rounds are still visible"""
        previous = await asyncio.to_thread(self.store.get_round_snapshot, network.chain_id, iteration_id, 0)
        block = await reader.block_number()
        snapshot = RoundSnapshot(
            network_id=network.chain_id,
            iteration_id=iteration_id,
            round_id=0,
            registry_address=network.registry_address.lower(),
            lifecycle_state=LifecycleState.DEPLOYED,
            last_observed_block=_carry(block, previous, lambda s: s.last_observed_block, 0, int),
            last_updated_at=self._now_ms(),
        )
        await self._store(snapshot, previous)

    async def _store(self, snapshot: RoundSnapshot, previous: Optional[RoundSnapshot]) -> bool:
        if previous is not None and snapshot.same_state(previous):
            return False
        await asyncio.to_thread(self.store.upsert_round_snapshot, snapshot)
        logger.info(
            f"📸 Chain {snapshot.network_id} iteration {snapshot.iteration_id} round {snapshot.round_id}: "
            f"{snapshot.lifecycle_state.value}, {len(snapshot.projects)} project(s)"
        )
        return True
