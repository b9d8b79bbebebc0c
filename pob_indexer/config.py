"""
Indexer Configuration
=====================

Loads all environment variables for the snapshot indexer.

Environment variables should be set in .env file in project root.
Per-network endpoints and contract addresses live in utils/networks.py.
"""

import os

from dotenv import load_dotenv

load_dotenv()

# ============================================================
# Build Info
# ============================================================
BUILD_ID = os.getenv("BUILD_ID", "dev-local")
GITHUB_COMMIT = os.getenv("GITHUB_SHA", "unknown")

# ============================================================
# Snapshot Store
# ============================================================
# "supabase" for production, "memory" for local runs (state is lost on restart)
STORE_BACKEND = os.getenv("STORE_BACKEND", "supabase").lower()

SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY")  # Indexer is the only writer

# ============================================================
# Polling
# ============================================================
ITERATION_POLL_INTERVAL = float(os.getenv("ITERATION_POLL_INTERVAL", "37"))  # seconds
CERT_POLL_INTERVAL = float(os.getenv("CERT_POLL_INTERVAL", "37"))  # seconds

# Optional single-network mode: only index this chain id
SINGLE_CHAIN_ID = int(os.getenv("CHAIN_ID")) if os.getenv("CHAIN_ID") else None

RPC_TIMEOUT_SECONDS = float(os.getenv("RPC_TIMEOUT_SECONDS", "20"))

# ============================================================
# IPFS (content-addressed metadata)
# ============================================================
IPFS_API_URL = os.getenv("IPFS_API_URL", "http://localhost:5001")
IPFS_FALLBACK_API_URL = os.getenv("IPFS_FALLBACK_API_URL") or None
IPFS_USE_DAG = os.getenv("IPFS_USE_DAG", "true").lower() != "false"
IPFS_TIMEOUT_SECONDS = float(os.getenv("IPFS_TIMEOUT_SECONDS", "15"))

# ============================================================
# Retry Backoff (failed IPFS fetches)
# ============================================================
# next_retry_at = now + min(MAX, BASE * 2^attempt_count)
# Defaults: 5 min after the first failure, capped at 24 hours
RETRY_BASE_DELAY_SECONDS = float(os.getenv("RETRY_BASE_DELAY_SECONDS", "150"))
RETRY_MAX_DELAY_SECONDS = float(os.getenv("RETRY_MAX_DELAY_SECONDS", str(24 * 60 * 60)))

# ============================================================
# Role Event Log Scanning (eligibility)
# ============================================================
LOG_SCAN_START_BLOCK = int(os.getenv("LOG_SCAN_START_BLOCK", "0"))
LOG_SCAN_CHUNK_BLOCKS = int(os.getenv("LOG_SCAN_CHUNK_BLOCKS", "5000"))

# ============================================================
# Logging
# ============================================================
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# ============================================================
# HTTP (health endpoint)
# ============================================================
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))


# ============================================================
# Configuration Validation
# ============================================================

def validate_config():
    """
    Validates that all required configuration is present.
    Called on application startup; errors here are fatal.
    """
    from pob_indexer.utils.networks import load_networks

    errors = []

    if STORE_BACKEND not in ("supabase", "memory"):
        errors.append(f"STORE_BACKEND must be 'supabase' or 'memory' (got '{STORE_BACKEND}')")
    elif STORE_BACKEND == "supabase":
        if not SUPABASE_URL:
            errors.append("SUPABASE_URL is not set")
        if not SUPABASE_SERVICE_ROLE_KEY:
            errors.append("SUPABASE_SERVICE_ROLE_KEY is not set")

    networks = load_networks()
    if not networks:
        if SINGLE_CHAIN_ID is not None:
            errors.append(f"CHAIN_ID={SINGLE_CHAIN_ID} does not match any configured network")
        else:
            errors.append("No networks configured")
    elif not any(n.registry_address or n.cert_nft_address for n in networks.values()):
        errors.append("No network has a registry or CertNFT address configured")

    if ITERATION_POLL_INTERVAL <= 0 or CERT_POLL_INTERVAL <= 0:
        errors.append("Poll intervals must be positive")

    if errors:
        raise ValueError("Configuration errors:\n" + "\n".join(f"  - {e}" for e in errors))

    return True


def print_config_summary():
    """
    Prints a summary of the configuration (for debugging).
    NEVER prints secrets!
    """
    from pob_indexer.utils.networks import load_networks

    print("=" * 60)
    print("Indexer Configuration Summary")
    print("=" * 60)
    print(f"Build ID: {BUILD_ID}")
    print(f"GitHub Commit: {GITHUB_COMMIT}")
    print(f"Store: {STORE_BACKEND}" + (f" ({SUPABASE_URL})" if STORE_BACKEND == "supabase" else ""))
    print(f"Iteration poll: {ITERATION_POLL_INTERVAL}s")
    print(f"Cert poll: {CERT_POLL_INTERVAL}s")
    print(f"Single chain mode: {SINGLE_CHAIN_ID if SINGLE_CHAIN_ID is not None else 'off'}")
    print(f"IPFS: {IPFS_API_URL} (fallback: {IPFS_FALLBACK_API_URL or 'none'}, dag={IPFS_USE_DAG})")
    print(f"Retry backoff: base {RETRY_BASE_DELAY_SECONDS}s, max {RETRY_MAX_DELAY_SECONDS}s")
    print(f"Log scan: start block {LOG_SCAN_START_BLOCK}, chunk {LOG_SCAN_CHUNK_BLOCKS} blocks")
    for chain_id, network in load_networks().items():
        print(f"Network {chain_id} ({network.name}): {network.rpc_url}")
        print(f"   Registry: {network.registry_address or '-'}")
        print(f"   CertNFT:  {network.cert_nft_address or '-'}")
    print("=" * 60)
