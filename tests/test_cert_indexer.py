import asyncio

import pytest

from pob_indexer.models.records import (
    CertStatus,
    MemberStatus,
    ProjectEntry,
    RoundSnapshot,
    TeamMembership,
)
from pob_indexer.tasks.cert_indexer import CertSnapshotIndexer, checkpoint_ref

from .conftest import (
    CERT_NFT,
    CHAIN_ID,
    DEV_REL,
    JURY,
    MIDDLEWARE,
    PROJECT_A,
    PROJECT_B,
    REGISTRY,
    VOTER_1,
)

BUILDER = "0x" + "77" * 20
STALE_MEMBER = "0x" + "99" * 20
MEMBERS = ["0x" + f"{i:02d}" * 20 for i in range(1, 6)]


@pytest.fixture
def indexer(store, pollers, content_cache, clock):
    return CertSnapshotIndexer(
        store, pollers, content_cache, clock=clock, log_scan_chunk_blocks=5000, log_scan_start_block=0
    )


def _run(indexer, network):
    asyncio.run(indexer.index_network(network))


def _seed_certs(ledger, count=3):
    ledger.set(CERT_NFT, "nextTokenId", count + 1)
    for token_id in range(1, count + 1):
        ledger.set(CERT_NFT, "certs", (1, PROJECT_A, "participant", f"info-{token_id}", 0, 100 + token_id), token_id)
        ledger.set(CERT_NFT, "certStatus", 0, token_id)
    ledger.set(CERT_NFT, "middleware", MIDDLEWARE, 1)
    ledger.set(MIDDLEWARE, "templateCID", "tmpl-1")


def _store_round(store, projects=(PROJECT_A,), deploy_block_hint=0, iteration_id=1):
    store.upsert_round_snapshot(RoundSnapshot(
        network_id=CHAIN_ID,
        iteration_id=iteration_id,
        round_id=1,
        registry_address=REGISTRY,
        jury_address=JURY,
        deploy_block_hint=deploy_block_hint,
        dev_rel_account=DEV_REL,
        dao_hic_voters=[VOTER_1],
        projects=[ProjectEntry(address=p) for p in projects],
    ))


# ============================================================
# Certs
# ============================================================

def test_indexes_new_certs(indexer, ledger, ipfs, store, network):
    _seed_certs(ledger)
    ipfs.put("tmpl-1", {"template": "<svg/>"})

    _run(indexer, network)

    assert store.get_highest_token_id(CHAIN_ID) == 3
    cert = store.get_cert(CHAIN_ID, 2)
    assert cert.account == PROJECT_A
    assert cert.cert_type == "participant"
    assert cert.info_cid == "info-2"
    assert cert.status == CertStatus.PENDING
    assert cert.request_time == 102
    assert cert.middleware_address == MIDDLEWARE
    assert cert.template_cid == "tmpl-1"

    # Middleware and template resolved once per iteration per tick
    assert len(ledger.called("middleware")) == 1
    assert len(ledger.called("templateCID")) == 1
    assert store.get_cached_content("tmpl-1") is not None


def test_high_water_mark_stays_contiguous(indexer, ledger, store, network):
    _seed_certs(ledger)
    ledger.transient(CERT_NFT, "certs", 2)

    _run(indexer, network)
    assert store.get_highest_token_id(CHAIN_ID) == 1
    assert store.get_cert(CHAIN_ID, 3) is None

    ledger.set(CERT_NFT, "certs", (1, PROJECT_A, "participant", "info-2", 0, 102), 2)
    _run(indexer, network)
    assert store.get_highest_token_id(CHAIN_ID) == 3


def test_only_new_tokens_are_read(indexer, ledger, network):
    _seed_certs(ledger)
    _run(indexer, network)
    ledger.calls.clear()

    _run(indexer, network)

    assert ledger.called("certs") == []


def test_non_final_statuses_are_rechecked(indexer, ledger, store, network, clock):
    _seed_certs(ledger, count=2)
    _run(indexer, network)

    clock.advance(37)
    ledger.set(CERT_NFT, "certStatus", 1, 1)
    ledger.set(CERT_NFT, "certStatus", 2, 2)
    _run(indexer, network)
    assert store.get_cert(CHAIN_ID, 1).status == CertStatus.MINTED
    assert store.get_cert(CHAIN_ID, 2).status == CertStatus.CANCELLED

    # Cancelled certs can be re-requested
    ledger.set(CERT_NFT, "certStatus", 3, 2)
    _run(indexer, network)
    assert store.get_cert(CHAIN_ID, 2).status == CertStatus.REQUESTED


def test_status_is_not_rewritten_on_failed_read(indexer, ledger, store, network):
    _seed_certs(ledger, count=1)
    _run(indexer, network)

    ledger.transient(CERT_NFT, "certStatus", 1)
    _run(indexer, network)

    assert store.get_cert(CHAIN_ID, 1).status == CertStatus.PENDING


def test_missing_cert_contract_skips_network(indexer, ledger, store, network):
    _seed_certs(ledger)
    ledger.code[CERT_NFT] = False

    _run(indexer, network)

    assert store.get_highest_token_id(CHAIN_ID) == 0
    assert ledger.called("nextTokenId") == []


# ============================================================
# Team rosters
# ============================================================

def _seed_roster(ledger, members):
    ledger.set(CERT_NFT, "getTeamMemberCount", len(members), 1, PROJECT_A)
    for index, member in enumerate(members):
        ledger.set(CERT_NFT, "getTeamMember", (member, 1, f"Member {index}"), 1, PROJECT_A, index)


def test_roster_deletion_is_gated_on_complete_fetch(indexer, ledger, store, network):
    _store_round(store)
    store.upsert_team_member(TeamMembership(
        network_id=CHAIN_ID,
        iteration_id=1,
        project_address=PROJECT_A,
        member_address=STALE_MEMBER,
        status=MemberStatus.APPROVED,
    ))
    _seed_roster(ledger, MEMBERS)
    ledger.transient(CERT_NFT, "getTeamMember", 1, PROJECT_A, 2)

    _run(indexer, network)

    stored = {m.member_address for m in store.list_team_members(CHAIN_ID, 1, PROJECT_A)}
    assert stored == {MEMBERS[0], MEMBERS[1], MEMBERS[3], MEMBERS[4], STALE_MEMBER}

    _seed_roster(ledger, MEMBERS)
    _run(indexer, network)

    stored = {m.member_address for m in store.list_team_members(CHAIN_ID, 1, PROJECT_A)}
    assert stored == set(MEMBERS)
    assert store.list_team_members(CHAIN_ID, 1, PROJECT_A)[0].status == MemberStatus.APPROVED


def test_failed_count_read_leaves_roster_alone(indexer, ledger, store, network):
    _store_round(store)
    _seed_roster(ledger, MEMBERS[:2])
    _run(indexer, network)

    ledger.transient(CERT_NFT, "getTeamMemberCount", 1, PROJECT_A)
    _run(indexer, network)

    assert len(store.list_team_members(CHAIN_ID, 1, PROJECT_A)) == 2


def test_complete_empty_roster_removes_all_rows(indexer, ledger, store, network):
    _store_round(store)
    _seed_roster(ledger, MEMBERS[:2])
    _run(indexer, network)

    _seed_roster(ledger, [])
    _run(indexer, network)

    assert store.list_team_members(CHAIN_ID, 1, PROJECT_A) == []


# ============================================================
# Eligibility
# ============================================================

def test_checkpoint_only_advances_over_successful_chunks(indexer, ledger, store, network):
    _store_round(store)
    ledger.set(CERT_NFT, "middleware", MIDDLEWARE, 1)
    ledger.set(MIDDLEWARE, "validate", (True, "builder"), BUILDER)
    ledger.add_event(MIDDLEWARE, "RoleRegistered", BUILDER, 100)
    ledger.block = 12_000
    ledger.failing_event_blocks = {7_000}

    _run(indexer, network)
    assert store.get_checkpoint(CHAIN_ID, checkpoint_ref(MIDDLEWARE, 1)).next_block_to_scan == 5_000
    builder = [r for r in store.list_eligibility(CHAIN_ID, 1) if r.account == BUILDER]
    assert builder and builder[0].eligible is True and builder[0].cert_type == "builder"

    ledger.failing_event_blocks = set()
    ledger.event_queries.clear()
    _run(indexer, network)
    assert store.get_checkpoint(CHAIN_ID, checkpoint_ref(MIDDLEWARE, 1)).next_block_to_scan == 12_001
    assert min(start for _, start, _ in ledger.event_queries) == 5_000

    ledger.event_queries.clear()
    _run(indexer, network)
    assert ledger.event_queries == []
    assert store.get_checkpoint(CHAIN_ID, checkpoint_ref(MIDDLEWARE, 1)).next_block_to_scan == 12_001


def test_scan_starts_at_round_deploy_block(indexer, ledger, store, network):
    _store_round(store, deploy_block_hint=900)
    ledger.set(CERT_NFT, "middleware", MIDDLEWARE, 1)
    ledger.block = 1_000

    _run(indexer, network)

    assert min(start for _, start, _ in ledger.event_queries) == 900
    assert store.get_checkpoint(CHAIN_ID, checkpoint_ref(MIDDLEWARE, 1)).next_block_to_scan == 1_001


def test_transient_validation_of_log_account_holds_checkpoint(indexer, ledger, store, network):
    _store_round(store)
    ledger.set(CERT_NFT, "middleware", MIDDLEWARE, 1)
    ledger.add_event(MIDDLEWARE, "RoleRegistered", BUILDER, 100)
    ledger.transient(MIDDLEWARE, "validate", BUILDER)

    _run(indexer, network)

    assert store.get_checkpoint(CHAIN_ID, checkpoint_ref(MIDDLEWARE, 1)) is None
    assert BUILDER not in {r.account for r in store.list_eligibility(CHAIN_ID, 1)}


def test_iterations_sharing_a_middleware_each_see_logged_accounts(indexer, ledger, store, network):
    _store_round(store, iteration_id=1)
    _store_round(store, iteration_id=2)
    ledger.set(CERT_NFT, "middleware", MIDDLEWARE, 1)
    ledger.set(CERT_NFT, "middleware", MIDDLEWARE, 2)
    ledger.set(MIDDLEWARE, "validate", (True, "builder"), BUILDER)
    ledger.add_event(MIDDLEWARE, "RoleRegistered", BUILDER, 100)

    _run(indexer, network)

    for iteration_id in (1, 2):
        assert BUILDER in {r.account for r in store.list_eligibility(CHAIN_ID, iteration_id)}
        assert store.get_checkpoint(CHAIN_ID, checkpoint_ref(MIDDLEWARE, iteration_id)).next_block_to_scan == 1_001


def test_candidates_are_revalidated(indexer, ledger, store, network):
    _store_round(store, projects=(PROJECT_A, PROJECT_B))
    ledger.set(CERT_NFT, "middleware", MIDDLEWARE, 1)
    ledger.set(MIDDLEWARE, "validate", (True, "project"), PROJECT_A)
    ledger.set(MIDDLEWARE, "validate", (True, "devrel"), DEV_REL)
    ledger.set(MIDDLEWARE, "isProjectInAnyRound", True, PROJECT_A)
    ledger.set(CERT_NFT, "hasNamedTeamMembers", True, 1, PROJECT_A)

    _run(indexer, network)

    records = {r.account: r for r in store.list_eligibility(CHAIN_ID, 1)}
    assert set(records) == {PROJECT_A, PROJECT_B, DEV_REL, VOTER_1}
    assert records[PROJECT_A].eligible is True
    assert records[PROJECT_A].is_project is True
    assert records[PROJECT_A].has_named_team_members is True
    assert records[DEV_REL].cert_type == "devrel"
    assert records[DEV_REL].is_project is False
    # isProjectInAnyRound unsupported for B: falls back to the round's project list
    assert records[PROJECT_B].is_project is True
    assert records[VOTER_1].eligible is False

    # Revoked role: next tick flips the stored record
    ledger.set(MIDDLEWARE, "validate", (False, ""), DEV_REL)
    _run(indexer, network)
    assert {r.account: r for r in store.list_eligibility(CHAIN_ID, 1)}[DEV_REL].eligible is False


def test_iteration_without_middleware_is_skipped(indexer, ledger, store, network):
    _store_round(store)

    _run(indexer, network)

    assert store.list_eligibility(CHAIN_ID, 1) == []
    assert ledger.event_queries == []


# ============================================================
# Profiles
# ============================================================

def test_profiles_are_indexed_for_known_accounts(indexer, ledger, ipfs, store, network):
    _store_round(store)
    ledger.set(REGISTRY, "profilePictureCID", "pic-1", PROJECT_A)
    ledger.set(REGISTRY, "profileBioCID", "", PROJECT_A)
    ipfs.put("pic-1", {"image": "data"})

    _run(indexer, network)

    profile = store.get_profile(CHAIN_ID, PROJECT_A)
    assert profile.picture_cid == "pic-1"
    assert profile.bio_cid == ""
    assert store.get_cached_content("pic-1") is not None
    # Accounts without any profile field are not stored
    assert store.get_profile(CHAIN_ID, DEV_REL) is None


def test_transient_profile_read_is_skipped(indexer, ledger, store, network):
    _store_round(store)
    ledger.set(REGISTRY, "profilePictureCID", "pic-1", PROJECT_A)
    ledger.transient(REGISTRY, "profileBioCID", PROJECT_A)

    _run(indexer, network)

    assert store.get_profile(CHAIN_ID, PROJECT_A) is None


def test_tick_drops_stale_retry_records(indexer, retry_tracker, clock):
    retry_tracker.record_failure("ipfs", "fetch", "cid-gone", "not found")
    clock.advance(31 * 86400)

    asyncio.run(indexer.run_tick())

    assert retry_tracker.get_record("ipfs", "fetch", "cid-gone") is None
