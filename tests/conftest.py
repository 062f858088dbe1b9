"""
Shared fixtures for ledger tests.
"""
import pytest

from blockchain_core import Blockchain, create_genesis_block, CONSENSUS_ALGORITHM_KEY
from signing import Signer
from simulation import SimulationEngine
from smallbank import create_playlist


@pytest.fixture
def signer():
    return Signer.generate()


@pytest.fixture
def genesis(signer):
    return create_genesis_block(signer, {CONSENSUS_ALGORITHM_KEY: "dbft"})


@pytest.fixture
def blockchain(genesis):
    return Blockchain(genesis)


@pytest.fixture
def published_chain():
    """A chain with genesis plus a few smallbank blocks."""
    engine = SimulationEngine(4)
    payloads = list(create_playlist(4, 6, seed=7))
    engine.run_simulation(payloads, num_rounds=20, block_size=3, batch_size=2)
    return engine.blockchain
