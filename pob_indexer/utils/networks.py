"""
Network Configuration
=====================

Single source of truth for chain ids, RPC URLs and contract addresses.

Built-in defaults can be overridden per chain through the environment:
    NETWORK_<chain_id>_RPC_URL
    NETWORK_<chain_id>_REGISTRY_ADDRESS
    NETWORK_<chain_id>_CERT_NFT_ADDRESS

The local Hardhat chain also honours REGISTRY_CONTRACT_ADDRESS and
CERT_NFT_CONTRACT_ADDRESS so deploy scripts can export them directly.
"""

import os
from dataclasses import dataclass
from typing import Dict, Optional


@dataclass(frozen=True)
class NetworkConfig:
    chain_id: int
    name: str
    rpc_url: str
    registry_address: str = ""
    cert_nft_address: str = ""


_DEFAULT_NETWORKS = {
    57: {
        "name": "NEVM Mainnet",
        "rpc_url": "https://rpc.syscoin.org",
        "registry_address": "",
        "cert_nft_address": "",
    },
    5700: {
        "name": "NEVM Testnet",
        "rpc_url": "https://rpc.tanenbaum.io",
        "registry_address": "0xA985cE400afea8eEf107c24d879c8c777ece1a8a",
        "cert_nft_address": "",
    },
    31337: {
        "name": "Hardhat",
        "rpc_url": "http://localhost:8547",
        "registry_address": os.getenv("REGISTRY_CONTRACT_ADDRESS", "0xab180957A96821e90C0114292DDAfa9E9B050d65"),
        "cert_nft_address": os.getenv("CERT_NFT_CONTRACT_ADDRESS", ""),
    },
}


def load_networks(single_chain_id: Optional[int] = None) -> Dict[int, NetworkConfig]:
    """
    Build the network table from defaults + environment overrides.

    Args:
        single_chain_id: If set, only this chain is returned. Defaults to the
                         CHAIN_ID setting (constrained deployments).

    Returns:
        {chain_id: NetworkConfig}
    """
    if single_chain_id is None:
        from pob_indexer.config import SINGLE_CHAIN_ID
        single_chain_id = SINGLE_CHAIN_ID

    networks = {}
    for chain_id, defaults in _DEFAULT_NETWORKS.items():
        if single_chain_id is not None and chain_id != single_chain_id:
            continue

        prefix = f"NETWORK_{chain_id}_"
        networks[chain_id] = NetworkConfig(
            chain_id=chain_id,
            name=defaults["name"],
            rpc_url=os.getenv(prefix + "RPC_URL", defaults["rpc_url"]),
            registry_address=os.getenv(prefix + "REGISTRY_ADDRESS", defaults["registry_address"]),
            cert_nft_address=os.getenv(prefix + "CERT_NFT_ADDRESS", defaults["cert_nft_address"]),
        )

    return networks
