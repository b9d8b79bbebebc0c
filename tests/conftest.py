import json

import pytest

from pob_indexer.db.store import MemorySnapshotStore
from pob_indexer.utils.chain_pollers import ChainPollerSet
from pob_indexer.utils.content_cache import ContentCache
from pob_indexer.utils.ipfs_client import IPFSFetchError
from pob_indexer.utils.ledger import ReadResult
from pob_indexer.utils.networks import NetworkConfig
from pob_indexer.utils.retry_tracker import RetryTracker

CHAIN_ID = 31337
REGISTRY = "0x" + "ab" * 20
CERT_NFT = "0x" + "cd" * 20
JURY = "0x" + "11" * 20
POB = "0x" + "22" * 20
MIDDLEWARE = "0x" + "33" * 20
DEV_REL = "0x" + "44" * 20
VOTER_1 = "0x" + "55" * 20
VOTER_2 = "0x" + "66" * 20
PROJECT_A = "0x" + "a1" * 20
PROJECT_B = "0x" + "b2" * 20
ZERO = "0x" + "00" * 20


def _key(value):
    if isinstance(value, str):
        return value.lower()
    if isinstance(value, (list, tuple)):
        return tuple(_key(v) for v in value)
    return value


class FakeLedger:
    """
    Scripted stand-in for LedgerReader.

    Responses are keyed by (address, fn, args). A stored ReadResult is
    returned as-is, anything else is wrapped as a success. Unscripted
    calls are NOT_SUPPORTED.
    """

    def __init__(self):
        self.responses = {}
        self.code = {}
        self.block = 1000
        self.block_error = None
        self.events = []
        self.failing_event_blocks = set()
        self.calls = []
        self.event_queries = []

    def set(self, address, fn, value, *args):
        self.responses[(_key(address), fn, _key(args))] = value

    def transient(self, address, fn, *args):
        self.set(address, fn, ReadResult.transient("connection reset"), *args)

    def unset(self, address, fn, *args):
        self.responses.pop((_key(address), fn, _key(args)), None)

    def called(self, fn):
        return [c for c in self.calls if c[1] == fn]

    async def call(self, address, kind, fn, *args):
        key = (_key(address), fn, _key(args))
        self.calls.append(key)
        if key not in self.responses:
            return ReadResult.not_supported("execution reverted")
        value = self.responses[key]
        if isinstance(value, ReadResult):
            return value
        return ReadResult.success(value)

    async def has_code(self, address):
        return ReadResult.success(self.code.get(_key(address), True))

    async def block_number(self):
        if self.block_error:
            return ReadResult.transient(self.block_error)
        return ReadResult.success(self.block)

    async def get_events(self, address, kind, event, from_block, to_block):
        self.event_queries.append((event, from_block, to_block))
        if any(from_block <= b <= to_block for b in self.failing_event_blocks):
            return ReadResult.transient("log query timed out")
        return ReadResult.success([
            e for e in self.events
            if e["event"] == event and _key(e["address"]) == _key(address) and from_block <= e["block_number"] <= to_block
        ])

    def add_event(self, address, event, account, block_number):
        self.events.append({"address": address, "event": event, "account": account.lower(), "block_number": block_number})


class FakeIPFS:
    def __init__(self):
        self.content = {}
        self.requests = []

    def put(self, cid, data):
        self.content[cid] = data if isinstance(data, str) else json.dumps(data)

    async def fetch_raw(self, cid):
        self.requests.append(cid)
        if cid not in self.content:
            raise IPFSFetchError(f"Failed to fetch {cid}")
        return self.content[cid]


class FakeClock:
    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemorySnapshotStore()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def ipfs():
    return FakeIPFS()


@pytest.fixture
def network():
    return NetworkConfig(
        chain_id=CHAIN_ID,
        name="Hardhat",
        rpc_url="http://localhost:8547",
        registry_address=REGISTRY,
        cert_nft_address=CERT_NFT,
    )


@pytest.fixture
def pollers(network, ledger):
    return ChainPollerSet({CHAIN_ID: network}, reader_factory=lambda n: ledger)


@pytest.fixture
def retry_tracker(store, clock):
    return RetryTracker(store, base_delay=150, max_delay=86400, clock=clock)


@pytest.fixture
def content_cache(store, ipfs, retry_tracker, clock):
    return ContentCache(store, ipfs, retry_tracker, clock=clock)


def seed_round(ledger, iteration_id=1, round_id=1, jury=JURY, projects=(PROJECT_A, PROJECT_B), **flags):
    """Script a registry with one iteration/round and a jury with sensible defaults"""
    ledger.set(REGISTRY, "getAllIterationIds", [iteration_id])
    ledger.set(REGISTRY, "getRounds", [(iteration_id, round_id, jury, 500, True)], iteration_id)
    ledger.set(REGISTRY, "votingModeOverride", flags.get("override", 0), jury)
    ledger.set(
        REGISTRY,
        "batchGetProjectMetadata",
        [f"cid-{p[-4:]}" for p in projects],
        CHAIN_ID, jury, list(projects),
    )

    defaults = {
        "pob": POB,
        "votingMode": 0,
        "isActive": True,
        "votingEnded": False,
        "startTime": 1_700_000_000,
        "endTime": 1_700_600_000,
        "projectsLocked": True,
        "locked": False,
        "devRelAccount": DEV_REL,
        "getDaoHicVoters": [VOTER_1, VOTER_2],
        "getDevRelEntityVote": PROJECT_A,
        "getDaoHicEntityVote": PROJECT_A,
        "getCommunityEntityVote": PROJECT_B,
        "getVoteParticipationCounts": (1, 2, 40),
        "getWinnerConsensus": (PROJECT_A, True),
        "projectCount": len(projects),
    }
    for fn, value in defaults.items():
        ledger.set(jury, fn, flags.get(fn, value))
    for index, project in enumerate(projects, start=1):
        ledger.set(jury, "projectAddress", project, index)
    ledger.set(jury, "daoHicVoteOf", PROJECT_A, VOTER_1)
    ledger.set(jury, "daoHicVoteOf", ZERO, VOTER_2)
