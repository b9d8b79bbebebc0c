"""
Per-network ledger readers.

One LedgerReader per configured network, created lazily. A network takes
part in a sub-indexer only if it has the contract that sub-indexer reads.
"""

import logging
from typing import Callable, Dict, List, Optional

from pob_indexer.utils.ledger import LedgerReader
from pob_indexer.utils.networks import NetworkConfig

logger = logging.getLogger(__name__)


class ChainPollerSet:
    def __init__(
        self,
        networks: Dict[int, NetworkConfig],
        reader_factory: Optional[Callable[[NetworkConfig], LedgerReader]] = None,
    ):
        self.networks = dict(networks)
        self._reader_factory = reader_factory or LedgerReader.for_network
        self._readers: Dict[int, LedgerReader] = {}

    def network(self, chain_id: int) -> NetworkConfig:
        return self.networks[chain_id]

    def reader(self, chain_id: int) -> LedgerReader:
        reader = self._readers.get(chain_id)
        if reader is None:
            reader = self._reader_factory(self.networks[chain_id])
            self._readers[chain_id] = reader
            logger.info(f"🔌 Ledger reader ready for chain {chain_id} ({self.networks[chain_id].name})")
        return reader

    def active_networks(self, purpose: str) -> List[NetworkConfig]:
        """
        Networks that can serve a sub-indexer.

        Args:
            purpose: "iteration" (needs a registry) or "cert" (needs a CertNFT)
        """
        if purpose == "iteration":
            selected = [n for n in self.networks.values() if n.registry_address]
        elif purpose == "cert":
            selected = [n for n in self.networks.values() if n.cert_nft_address]
        else:
            raise ValueError(f"Unknown poller purpose: {purpose}")
        return sorted(selected, key=lambda n: n.chain_id)
