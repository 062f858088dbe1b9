# simulation.py
import logging
from typing import Any, Dict, List, Optional

from blockchain_core import (
    Blockchain, BlockPublisher, Mempool, ValidatorNode, create_genesis_block,
    make_batch, CONSENSUS_ALGORITHM_KEY, CONSENSUS_VALIDATORS_KEY,
)
from config import DEFAULTS
from signing import Signer
from smallbank import process_playlist

logger = logging.getLogger("smallchain.simulation")


class SimulationEngine:
    """Drives a validator set that publishes smallbank workload blocks."""
    def __init__(self, num_validators: int, config: Optional[Dict[str, Any]] = None,
                 blockchain: Optional[Blockchain] = None,
                 genesis_signer: Optional[Signer] = None):
        self.config = dict(DEFAULTS)
        if config:
            self.config.update(config)
        if num_validators < 1:
            raise ValueError("num_validators must be at least 1")

        logger.info("=== Initializing Simulation Engine ===")
        self.validators = [ValidatorNode(v_id, Signer.generate()) for v_id in range(num_validators)]
        self.client_signer = Signer.generate()

        if blockchain is None:
            signer = genesis_signer or self.validators[0].signer
            genesis = create_genesis_block(signer, {
                CONSENSUS_ALGORITHM_KEY: self.config["consensus_algorithm"],
                CONSENSUS_VALIDATORS_KEY: ",".join(v.public_key for v in self.validators),
            })
            blockchain = Blockchain(genesis)
        self.blockchain = blockchain

        self.mempool = Mempool()
        self.publisher = BlockPublisher(self.validators, self.mempool)
        logger.info(f"Created {num_validators} validators.")

    def submit_playlist(self, payloads: List[Dict[str, Any]], batch_size: int) -> int:
        """Signs the payloads and queues them as batches; returns the batch count."""
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        transactions = process_playlist(payloads, self.client_signer)
        count = 0
        for start in range(0, len(transactions), batch_size):
            self.mempool.add_batch(make_batch(transactions[start:start + batch_size], self.client_signer))
            count += 1
        logger.info(f"Submitted {count} batches to the mempool.")
        return count

    def run_simulation(self, payloads: List[Dict[str, Any]], num_rounds: int,
                       block_size: int, batch_size: int) -> List:
        """The main simulation loop. Returns the blocks it published."""
        logger.info(f"=== Starting Simulation: up to {num_rounds} rounds, block size {block_size} ===")
        self.submit_playlist(payloads, batch_size)

        published = []
        for r in range(num_rounds):
            if not self.mempool.pending_batches:
                break
            logger.debug(f"ROUND {r + 1}/{num_rounds}")
            block = self.publisher.run_consensus_round(block_size, self.blockchain)
            if block is not None:
                published.append(block)

        if self.mempool.pending_batches:
            logger.warning(f"{len(self.mempool)} batches still pending after {num_rounds} rounds")
        logger.info(f"Published {len(published)} blocks; chain height is {len(self.blockchain)}")
        return published
