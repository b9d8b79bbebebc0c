"""
Cert Snapshot Indexer
=====================

Mirrors certificate NFTs, team rosters, cert eligibility and profiles.

Per tick, per network (networks are walked sequentially):
1. Certs: new token ids above the stored high-water mark, then a status
   re-read of every non-final cert
2. Team rosters for every project seen in the stored round snapshots
3. Eligibility: incremental RoleRegistered/RoleRemoved log scan per
   (middleware, iteration), then revalidation of every candidate account
4. Profiles (picture/bio CIDs) for accounts seen in certs and snapshots

After all networks, retry records untouched for 30 days are dropped.

Each step catches its own failures so the next step still runs.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from pob_indexer.db.store import SnapshotStore
from pob_indexer.models.records import (
    CertRecord,
    CertStatus,
    EligibilityRecord,
    MemberStatus,
    ProfileRecord,
    RoundSnapshot,
    ScanCheckpoint,
    TeamMembership,
)
from pob_indexer.utils.chain_pollers import ChainPollerSet
from pob_indexer.utils.content_cache import ContentCache
from pob_indexer.utils.ledger import LedgerReader, ReadResult, normalize_address
from pob_indexer.utils.networks import NetworkConfig

logger = logging.getLogger(__name__)

CERT_STATUS_BY_CODE = {
    0: CertStatus.PENDING,
    1: CertStatus.MINTED,
    2: CertStatus.CANCELLED,
    3: CertStatus.REQUESTED,
}

MEMBER_STATUS_BY_CODE = {
    0: MemberStatus.PROPOSED,
    1: MemberStatus.APPROVED,
    2: MemberStatus.REJECTED,
}

ROLE_EVENTS = ("RoleRegistered", "RoleRemoved")


def checkpoint_ref(middleware: str, iteration_id: int) -> str:
    """Scan checkpoint key; iterations sharing a middleware scan independently"""
    return f"{middleware.lower()}#{iteration_id}"


def _same_record(a, b) -> bool:
    exclude = {"last_updated_at"}
    return a.model_dump(exclude=exclude) == b.model_dump(exclude=exclude)


class CertSnapshotIndexer:
    def __init__(
        self,
        store: SnapshotStore,
        pollers: ChainPollerSet,
        content_cache: ContentCache,
        clock: Callable[[], float] = time.time,
        log_scan_chunk_blocks: Optional[int] = None,
        log_scan_start_block: Optional[int] = None,
    ):
        if log_scan_chunk_blocks is None or log_scan_start_block is None:
            from pob_indexer.config import LOG_SCAN_CHUNK_BLOCKS, LOG_SCAN_START_BLOCK
            if log_scan_chunk_blocks is None:
                log_scan_chunk_blocks = LOG_SCAN_CHUNK_BLOCKS
            if log_scan_start_block is None:
                log_scan_start_block = LOG_SCAN_START_BLOCK

        self.store = store
        self.pollers = pollers
        self.content_cache = content_cache
        self.clock = clock
        self.log_scan_chunk_blocks = max(1, log_scan_chunk_blocks)
        self.log_scan_start_block = log_scan_start_block

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    # ════════════════════════════════════════════════════════════════
    # Tick
    # ════════════════════════════════════════════════════════════════

    async def run_tick(self):
        for network in self.pollers.active_networks("cert"):
            try:
                await self.index_network(network)
            except Exception as e:
                logger.error(f"❌ Cert indexing failed for chain {network.chain_id}: {e}")

        try:
            await asyncio.to_thread(self.content_cache.retry_tracker.cleanup)
        except Exception as e:
            logger.error(f"❌ Retry record cleanup failed: {e}")

    async def index_network(self, network: NetworkConfig):
        reader = self.pollers.reader(network.chain_id)
        code = await reader.has_code(network.cert_nft_address)
        if not code.ok:
            logger.warning(f"⚠️  Chain {network.chain_id}: CertNFT unreachable, skipping tick ({code.detail})")
            return
        if not code.value:
            logger.warning(
                f"⚠️  Chain {network.chain_id}: no contract code at CertNFT {network.cert_nft_address}, skipping"
            )
            return

        # Middleware + template per iteration, resolved at most once per tick
        middleware_memo: Dict[int, Tuple[Optional[str], Optional[str]]] = {}
        snapshots = await asyncio.to_thread(self.store.list_round_snapshots, network.chain_id)

        steps = [
            ("certs", lambda: self.index_certs(network, reader, middleware_memo)),
            ("team rosters", lambda: self.index_team_rosters(network, reader, snapshots)),
            ("eligibility", lambda: self.index_eligibility(network, reader, snapshots, middleware_memo)),
            ("profiles", lambda: self.index_profiles(network, reader, snapshots)),
        ]
        for name, step in steps:
            try:
                await step()
            except Exception as e:
                logger.error(f"❌ Chain {network.chain_id}: {name} step failed: {e}")

    # ════════════════════════════════════════════════════════════════
    # Certs
    # ════════════════════════════════════════════════════════════════

    async def _middleware_for(
        self,
        reader: LedgerReader,
        network: NetworkConfig,
        iteration_id: int,
        memo: Dict[int, Tuple[Optional[str], Optional[str]]],
    ) -> ReadResult:
        """(middleware address, template CID) for an iteration"""
        if iteration_id in memo:
            return ReadResult.success(memo[iteration_id])

        middleware_read = await reader.call(network.cert_nft_address, "cert_nft", "middleware", iteration_id)
        if middleware_read.is_transient:
            return middleware_read
        middleware = normalize_address(middleware_read.unwrap_or(None))

        template_cid = None
        if middleware:
            template_read = await reader.call(middleware, "middleware", "templateCID")
            if template_read.is_transient:
                return template_read
            template_cid = template_read.unwrap_or("") or None
            await self.content_cache.get_or_fetch(template_cid)

        memo[iteration_id] = (middleware, template_cid)
        return ReadResult.success(memo[iteration_id])

    async def _read_cert(
        self,
        network: NetworkConfig,
        reader: LedgerReader,
        token_id: int,
        memo: Dict[int, Tuple[Optional[str], Optional[str]]],
    ) -> Optional[CertRecord]:
        cert_nft = network.cert_nft_address
        cert_read, status_read = await asyncio.gather(
            reader.call(cert_nft, "cert_nft", "certs", token_id),
            reader.call(cert_nft, "cert_nft", "certStatus", token_id),
        )
        if not cert_read.ok or status_read.is_transient:
            return None

        iteration, account, cert_type, info_cid, raw_status, request_time = cert_read.value
        status_code = status_read.value if status_read.ok else raw_status

        middleware = await self._middleware_for(reader, network, int(iteration), memo)
        if not middleware.ok:
            return None
        middleware_address, template_cid = middleware.value

        await self.content_cache.get_or_fetch(info_cid or None)

        return CertRecord(
            network_id=network.chain_id,
            cert_contract=cert_nft.lower(),
            token_id=token_id,
            iteration_id=int(iteration),
            account=account.lower(),
            cert_type=cert_type,
            info_cid=info_cid or None,
            status=CERT_STATUS_BY_CODE.get(int(status_code), CertStatus.PENDING),
            request_time=int(request_time),
            middleware_address=middleware_address,
            template_cid=template_cid,
            last_updated_at=self._now_ms(),
        )

    async def index_certs(self, network: NetworkConfig, reader: LedgerReader, memo=None) -> int:
        """
        Index new tokens in order, then re-read non-final statuses.

        Returns:
            Number of new tokens indexed
        """
        memo = {} if memo is None else memo
        chain_id = network.chain_id
        indexed = 0

        next_token = await reader.call(network.cert_nft_address, "cert_nft", "nextTokenId")
        if next_token.ok:
            highest = await asyncio.to_thread(self.store.get_highest_token_id, chain_id)
            # Token ids start at 1; stop at the first failure so the mark stays contiguous
            for token_id in range(highest + 1, int(next_token.value)):
                cert = await self._read_cert(network, reader, token_id, memo)
                if cert is None:
                    logger.warning(f"⚠️  Chain {chain_id}: cert {token_id} unreadable, resuming next tick")
                    break
                await asyncio.to_thread(self.store.upsert_cert, cert)
                indexed += 1
                logger.info(f"🎓 Chain {chain_id}: indexed cert {token_id} ({cert.cert_type}, {cert.status.value})")
        else:
            logger.warning(f"⚠️  Chain {chain_id}: nextTokenId unavailable ({next_token.detail})")

        await self._recheck_non_final(network, reader)
        return indexed

    async def _recheck_non_final(self, network: NetworkConfig, reader: LedgerReader):
        certs = await asyncio.to_thread(self.store.list_non_final_certs, network.chain_id)
        if not certs:
            return

        reads = await asyncio.gather(
            *(reader.call(network.cert_nft_address, "cert_nft", "certStatus", c.token_id) for c in certs)
        )
        for cert, read in zip(certs, reads):
            if not read.ok:
                continue
            status = CERT_STATUS_BY_CODE.get(int(read.value), CertStatus.PENDING)
            if status == cert.status:
                continue
            updated = cert.model_copy(update={"status": status, "last_updated_at": self._now_ms()})
            await asyncio.to_thread(self.store.upsert_cert, updated)
            logger.info(
                f"🔄 Chain {network.chain_id}: cert {cert.token_id} {cert.status.value} → {status.value}"
            )

    # ════════════════════════════════════════════════════════════════
    # Team rosters
    # ════════════════════════════════════════════════════════════════

    @staticmethod
    def _projects_by_iteration(snapshots: Iterable[RoundSnapshot]) -> Dict[int, List[str]]:
        projects: Dict[int, List[str]] = {}
        for snapshot in snapshots:
            bucket = projects.setdefault(snapshot.iteration_id, [])
            for entry in snapshot.projects:
                if entry.address not in bucket:
                    bucket.append(entry.address)
        return {iteration: addresses for iteration, addresses in projects.items() if addresses}

    async def index_team_rosters(self, network: NetworkConfig, reader: LedgerReader, snapshots=None):
        if snapshots is None:
            snapshots = await asyncio.to_thread(self.store.list_round_snapshots, network.chain_id)

        for iteration_id, projects in self._projects_by_iteration(snapshots).items():
            for project in projects:
                try:
                    await self.sync_roster(network, reader, iteration_id, project)
                except Exception as e:
                    logger.warning(
                        f"⚠️  Chain {network.chain_id}: roster sync failed for {project} "
                        f"(iteration {iteration_id}): {e}"
                    )

    async def sync_roster(self, network: NetworkConfig, reader: LedgerReader, iteration_id: int, project: str) -> bool:
        """
        Refresh one (iteration, project) roster.

        Fetched members are always upserted. Rows missing from the roster are
        deleted only if the count and every member read succeeded.

        Returns:
            True if the roster was fetched completely
        """
        chain_id = network.chain_id
        cert_nft = network.cert_nft_address
        project = project.lower()

        count = await reader.call(cert_nft, "cert_nft", "getTeamMemberCount", iteration_id, project)
        if not count.ok:
            return False

        reads = await asyncio.gather(
            *(reader.call(cert_nft, "cert_nft", "getTeamMember", iteration_id, project, i)
              for i in range(int(count.value)))
        )

        existing = {
            m.member_address: m
            for m in await asyncio.to_thread(self.store.list_team_members, chain_id, iteration_id, project)
        }
        roster = []
        complete = True
        for index, read in enumerate(reads):
            if not read.ok:
                complete = False
                logger.warning(
                    f"⚠️  Chain {chain_id}: team member {index} of {project} unreadable ({read.detail})"
                )
                continue

            member_address, raw_status, full_name = read.value
            member = TeamMembership(
                network_id=chain_id,
                iteration_id=iteration_id,
                project_address=project,
                member_address=member_address.lower(),
                status=MEMBER_STATUS_BY_CODE.get(int(raw_status), MemberStatus.PROPOSED),
                full_name=full_name or "",
                last_updated_at=self._now_ms(),
            )
            roster.append(member.member_address)
            previous = existing.get(member.member_address)
            if previous is None or not _same_record(previous, member):
                await asyncio.to_thread(self.store.upsert_team_member, member)

        if complete:
            removed = await asyncio.to_thread(
                self.store.delete_team_members_not_in, chain_id, iteration_id, project, roster
            )
            if removed:
                logger.info(f"🧹 Chain {chain_id}: removed {removed} stale team member(s) from {project}")
        return complete

    # ════════════════════════════════════════════════════════════════
    # Eligibility
    # ════════════════════════════════════════════════════════════════

    async def scan_role_events(
        self,
        network: NetworkConfig,
        reader: LedgerReader,
        middleware: str,
        iteration_id: int,
        start_hint: int = 0,
    ) -> Tuple[Set[str], Optional[int]]:
        """
        Scan role events from the stored checkpoint up to the current block.

        A chunk only counts as scanned when both event queries succeed; the
        scan stops at the first failed chunk.

        Returns:
            (accounts seen, next block to scan) where the block is None if
            nothing was scanned
        """
        chain_id = network.chain_id
        source_ref = checkpoint_ref(middleware, iteration_id)
        checkpoint = await asyncio.to_thread(self.store.get_checkpoint, chain_id, source_ref)
        next_block = checkpoint.next_block_to_scan if checkpoint else max(self.log_scan_start_block, start_hint)

        current = await reader.block_number()
        if not current.ok:
            return set(), None

        accounts: Set[str] = set()
        scanned_to = None
        while next_block <= current.value:
            chunk_end = min(current.value, next_block + self.log_scan_chunk_blocks - 1)
            reads = await asyncio.gather(
                *(reader.get_events(middleware, "middleware", event, next_block, chunk_end) for event in ROLE_EVENTS)
            )
            if not all(read.ok for read in reads):
                logger.warning(
                    f"⚠️  Chain {chain_id}: role log scan failed for blocks {next_block}-{chunk_end}, "
                    f"checkpoint stays at {next_block}"
                )
                break
            for read in reads:
                accounts.update(e["account"].lower() for e in read.value if e.get("account"))
            next_block = chunk_end + 1
            scanned_to = next_block

        return accounts, scanned_to

    async def index_eligibility(
        self,
        network: NetworkConfig,
        reader: LedgerReader,
        snapshots=None,
        memo=None,
    ):
        memo = {} if memo is None else memo
        chain_id = network.chain_id
        if snapshots is None:
            snapshots = await asyncio.to_thread(self.store.list_round_snapshots, chain_id)

        by_iteration: Dict[int, List[RoundSnapshot]] = {}
        for snapshot in snapshots:
            by_iteration.setdefault(snapshot.iteration_id, []).append(snapshot)

        for iteration_id, rounds in sorted(by_iteration.items()):
            middleware = await self._middleware_for(reader, network, iteration_id, memo)
            if not middleware.ok or not middleware.value[0]:
                continue
            try:
                await self.index_iteration_eligibility(network, reader, iteration_id, middleware.value[0], rounds)
            except Exception as e:
                logger.warning(f"⚠️  Chain {chain_id}: eligibility failed for iteration {iteration_id}: {e}")

    async def index_iteration_eligibility(
        self,
        network: NetworkConfig,
        reader: LedgerReader,
        iteration_id: int,
        middleware: str,
        rounds: List[RoundSnapshot],
    ):
        chain_id = network.chain_id
        hints = [r.deploy_block_hint for r in rounds if r.deploy_block_hint]
        event_accounts, scanned_to = await self.scan_role_events(
            network, reader, middleware, iteration_id, min(hints) if hints else 0
        )

        projects = {entry.address for r in rounds for entry in r.projects}
        existing = {
            record.account: record
            for record in await asyncio.to_thread(self.store.list_eligibility, chain_id, iteration_id)
        }

        candidates: Set[str] = set(existing) | projects | event_accounts
        for r in rounds:
            if r.dev_rel_account:
                candidates.add(r.dev_rel_account)
            candidates.update(r.dao_hic_voters)
        candidates = {c.lower() for c in candidates if c}

        results = await asyncio.gather(
            *(self._revalidate(network, reader, iteration_id, middleware, account, projects, existing.get(account))
              for account in sorted(candidates))
        )

        unresolved_event_accounts = 0
        for account, record in zip(sorted(candidates), results):
            if record is None:
                if account in event_accounts:
                    unresolved_event_accounts += 1
                continue
            previous = existing.get(account)
            if previous is None or not _same_record(previous, record):
                await asyncio.to_thread(self.store.upsert_eligibility, record)

        # Accounts seen only in scanned logs must be stored before the scan moves past them
        if scanned_to is not None and unresolved_event_accounts == 0:
            await asyncio.to_thread(
                self.store.put_checkpoint,
                ScanCheckpoint(network_id=chain_id, source_ref=checkpoint_ref(middleware, iteration_id),
                               next_block_to_scan=scanned_to),
            )

        logger.debug(
            f"Chain {chain_id} iteration {iteration_id}: {len(candidates)} eligibility candidate(s), "
            f"{len(event_accounts)} from logs"
        )

    async def _revalidate(
        self,
        network: NetworkConfig,
        reader: LedgerReader,
        iteration_id: int,
        middleware: str,
        account: str,
        projects: Set[str],
        previous: Optional[EligibilityRecord],
    ) -> Optional[EligibilityRecord]:
        validate, in_round = await asyncio.gather(
            reader.call(middleware, "middleware", "validate", account),
            reader.call(middleware, "middleware", "isProjectInAnyRound", account),
        )
        if validate.is_transient:
            return None
        eligible, cert_type = validate.value if validate.ok else (False, "")

        if in_round.ok:
            is_project = bool(in_round.value)
        elif in_round.is_transient and previous is not None:
            is_project = previous.is_project
        else:
            is_project = account in projects

        has_named = False
        if is_project:
            named = await reader.call(
                network.cert_nft_address, "cert_nft", "hasNamedTeamMembers", iteration_id, account
            )
            if named.ok:
                has_named = bool(named.value)
            elif named.is_transient and previous is not None:
                has_named = previous.has_named_team_members

        return EligibilityRecord(
            network_id=network.chain_id,
            iteration_id=iteration_id,
            account=account,
            eligible=bool(eligible),
            cert_type=cert_type or "",
            is_project=is_project,
            has_named_team_members=has_named,
            last_updated_at=self._now_ms(),
        )

    # ════════════════════════════════════════════════════════════════
    # Profiles
    # ════════════════════════════════════════════════════════════════

    async def index_profiles(self, network: NetworkConfig, reader: LedgerReader, snapshots=None):
        if not network.registry_address:
            return
        chain_id = network.chain_id
        if snapshots is None:
            snapshots = await asyncio.to_thread(self.store.list_round_snapshots, chain_id)

        accounts: Set[str] = set(await asyncio.to_thread(self.store.list_cert_accounts, chain_id))
        for snapshot in snapshots:
            if snapshot.dev_rel_account:
                accounts.add(snapshot.dev_rel_account)
            accounts.update(snapshot.dao_hic_voters)
            accounts.update(entry.address for entry in snapshot.projects)

        for account in sorted(a.lower() for a in accounts if a):
            try:
                await self._index_profile(network, reader, account)
            except Exception as e:
                logger.warning(f"⚠️  Chain {chain_id}: profile for {account} failed: {e}")

    async def _index_profile(self, network: NetworkConfig, reader: LedgerReader, account: str):
        registry = network.registry_address
        picture, bio = await asyncio.gather(
            reader.call(registry, "registry", "profilePictureCID", account),
            reader.call(registry, "registry", "profileBioCID", account),
        )
        if picture.is_transient or bio.is_transient:
            return

        picture_cid = picture.unwrap_or("") or ""
        bio_cid = bio.unwrap_or("") or ""
        previous = await asyncio.to_thread(self.store.get_profile, network.chain_id, account)
        if previous is None and not (picture_cid or bio_cid):
            return

        profile = ProfileRecord(
            network_id=network.chain_id,
            account=account,
            picture_cid=picture_cid,
            bio_cid=bio_cid,
            last_updated_at=self._now_ms(),
        )
        if previous is None or not _same_record(previous, profile):
            await asyncio.to_thread(self.store.upsert_profile, profile)

        await asyncio.gather(
            self.content_cache.get_or_fetch(picture_cid or None),
            self.content_cache.get_or_fetch(bio_cid or None),
        )
