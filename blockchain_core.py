# blockchain_core.py
from collections import deque
from typing import Dict, Iterator, List, Optional, Union
import hashlib
import json
import logging
import os
import time

from data_structures import Transaction, Batch, Block, NULL_BLOCK_IDENTIFIER, canonical_bytes
from signing import Signer, verify

logger = logging.getLogger("smallchain.core")

SETTINGS_FAMILY = "settings"
SETTINGS_VERSION = "1.0"
SETTINGS_NAMESPACE = hashlib.sha512(SETTINGS_FAMILY.encode()).hexdigest()[:6]
CONSENSUS_ALGORITHM_KEY = "chain.consensus.algorithm"
CONSENSUS_VALIDATORS_KEY = "chain.consensus.validators"
BLOCK_ID_LENGTH = 128


class ChainError(Exception):
    """Base error for ledger operations."""


class InvalidBlockError(ChainError):
    """Raised when a block does not extend the current chain head."""


class BlockNotFoundError(ChainError):
    """Raised when a block number or id is not on the chain."""


def make_nonce() -> str:
    return f"{time.time_ns()}{os.urandom(4).hex()}"


def sign_transaction(transaction: Transaction, signer: Signer) -> Transaction:
    transaction.header_signature = signer.sign(transaction.header_bytes())
    return transaction


def make_batch(transactions: List[Transaction], signer: Signer) -> Batch:
    """Wraps already-signed transactions into a batch signed by `signer`."""
    batch = Batch(signer_public_key=signer.public_key_hex, transactions=list(transactions))
    batch.header_signature = signer.sign(batch.header_bytes())
    return batch


def settings_address(key: str) -> str:
    return SETTINGS_NAMESPACE + hashlib.sha256(key.encode()).hexdigest()


def make_setting_transaction(key: str, value: str, signer: Signer) -> Transaction:
    address = settings_address(key)
    payload = canonical_bytes({"action": "set", "key": key, "value": value})
    transaction = Transaction(
        family_name=SETTINGS_FAMILY,
        family_version=SETTINGS_VERSION,
        inputs=[address],
        outputs=[address],
        nonce=make_nonce(),
        payload=payload,
        signer_public_key=signer.public_key_hex,
        batcher_public_key=signer.public_key_hex,
    )
    return sign_transaction(transaction, signer)


def create_genesis_block(signer: Signer, settings: Dict[str, str]) -> Block:
    """Builds block 0, holding one batch of on-chain configuration transactions."""
    if CONSENSUS_ALGORITHM_KEY not in settings:
        raise ChainError(f"Genesis settings must include {CONSENSUS_ALGORITHM_KEY}")
    transactions = [
        make_setting_transaction(key, str(value), signer)
        for key, value in sorted(settings.items())
    ]
    genesis = Block(
        block_num=0,
        previous_block_id=NULL_BLOCK_IDENTIFIER,
        batches=[make_batch(transactions, signer)],
        signer_public_key=signer.public_key_hex,
    )
    genesis.header_signature = signer.sign(genesis.header_bytes())
    logger.info(f"Created genesis block {genesis.block_id[:16]}... with {len(transactions)} settings")
    return genesis


def verify_batch(batch: Batch) -> bool:
    if not batch.transactions:
        return False
    for txn in batch.transactions:
        if txn.batcher_public_key != batch.signer_public_key:
            return False
        if hashlib.sha512(txn.payload).hexdigest() != txn.payload_sha512:
            return False
        if not verify(txn.header_signature, txn.header_bytes(), txn.signer_public_key):
            return False
    return verify(batch.header_signature, batch.header_bytes(), batch.signer_public_key)


class Mempool:
    """A queue for pending batches."""
    def __init__(self):
        self.pending_batches = deque()

    def __len__(self):
        return len(self.pending_batches)

    def add_batch(self, batch: Batch):
        self.pending_batches.append(batch)

    def get_batches(self, n: int) -> List[Batch]:
        """Gets up to n batches from the queue."""
        batches = []
        count = min(n, len(self.pending_batches))
        for _ in range(count):
            batches.append(self.pending_batches.popleft())
        return batches

    def requeue(self, batches: List[Batch]):
        """Puts batches back at the end of the queue."""
        for batch in batches:
            self.pending_batches.append(batch)


class Blockchain:
    """The ledger: an append-only list of blocks starting at genesis."""
    def __init__(self, genesis: Block):
        if genesis.block_num != 0 or genesis.previous_block_id != NULL_BLOCK_IDENTIFIER:
            raise InvalidBlockError("First block must be a genesis block")
        self.chain = [genesis]
        self._by_id = {genesis.block_id: genesis}

    def __len__(self):
        return len(self.chain)

    @property
    def head(self) -> Block:
        return self.chain[-1]

    def add_block(self, block: Block):
        if block.block_num != len(self.chain):
            raise InvalidBlockError(
                f"Expected block number {len(self.chain)}, got {block.block_num}"
            )
        if block.previous_block_id != self.head.block_id:
            raise InvalidBlockError(
                f"Block {block.block_num} does not extend head {self.head.block_id[:16]}..."
            )
        if block.block_id in self._by_id:
            raise InvalidBlockError(f"Duplicate block id {block.block_id[:16]}...")
        self.chain.append(block)
        self._by_id[block.block_id] = block
        logger.info(f"Block {block.block_num} added to the blockchain.")

    def get_block(self, ref: Union[int, str]) -> Block:
        """Looks a block up by number or by full block id."""
        if isinstance(ref, int) or (isinstance(ref, str) and ref.isdigit() and len(ref) < BLOCK_ID_LENGTH):
            num = int(ref)
            if 0 <= num < len(self.chain):
                return self.chain[num]
            raise BlockNotFoundError(f"No block with number {num}")
        block = self._by_id.get(ref)
        if block is None:
            raise BlockNotFoundError(f"No block with id {ref}")
        return block

    def list_blocks(self, count: Optional[int] = None) -> Iterator[Block]:
        """Yields blocks newest first, at most `count` of them."""
        blocks = reversed(self.chain)
        for i, block in enumerate(blocks):
            if count is not None and i >= count:
                return
            yield block

    def get_setting(self, key: str) -> Optional[str]:
        """Returns the most recent value written for a settings key."""
        value = None
        for block in self.chain:
            for batch in block.batches:
                for txn in batch.transactions:
                    if txn.family_name != SETTINGS_FAMILY:
                        continue
                    payload = json.loads(txn.payload)
                    if payload.get("key") == key:
                        value = payload.get("value")
        return value

    def save(self, path: str):
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, "w") as f:
            json.dump([block.to_dict() for block in self.chain], f, indent=1)
        logger.info(f"Saved {len(self.chain)} blocks to {path}")

    @classmethod
    def load(cls, path: str) -> "Blockchain":
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except FileNotFoundError:
            raise ChainError(f"Chain file not found: {path}")
        except json.JSONDecodeError as e:
            raise ChainError(f"Chain file {path} is not valid JSON: {e}")
        if not data:
            raise ChainError(f"Chain file {path} contains no blocks")
        try:
            blocks = [Block.from_dict(item) for item in data]
        except (KeyError, TypeError, ValueError) as e:
            raise ChainError(f"Chain file {path} is malformed: {e}")
        blockchain = cls(blocks[0])
        for block in blocks[1:]:
            blockchain.add_block(block)
        logger.debug(f"Loaded {len(blockchain)} blocks from {path}")
        return blockchain


class ValidatorNode:
    """A validator that votes on proposed blocks."""
    def __init__(self, validator_id: int, signer: Signer):
        self.validator_id = validator_id
        self.signer = signer

    @property
    def public_key(self) -> str:
        return self.signer.public_key_hex

    def cast_vote(self, block: Block, chain_head_id: str) -> bool:
        """Votes yes when the block extends the head and every signature checks out."""
        if block.previous_block_id != chain_head_id:
            logger.debug(f"Validator {self.validator_id}: block does not extend head")
            return False
        for batch in block.batches:
            if not verify_batch(batch):
                logger.debug(f"Validator {self.validator_id}: invalid batch {batch.header_signature[:16]}...")
                return False
        return True


class BlockPublisher:
    """Proposes blocks and collects votes from the validator set."""
    def __init__(self, validators: List[ValidatorNode], mempool: Mempool):
        if not validators:
            raise ChainError("At least one validator is required")
        self.validators = validators
        self.mempool = mempool
        self.speaker_idx = 0

    @property
    def speaker(self) -> ValidatorNode:
        return self.validators[self.speaker_idx]

    def _take_valid_batches(self, block_size: int) -> List[Batch]:
        """Pulls up to block_size batches, dropping any that fail verification."""
        batches = []
        while len(batches) < block_size and self.mempool.pending_batches:
            for batch in self.mempool.get_batches(block_size - len(batches)):
                if verify_batch(batch):
                    batches.append(batch)
                else:
                    logger.warning(f"Dropping invalid batch {batch.header_signature[:16]}...")
        return batches

    def run_consensus_round(self, block_size: int, blockchain: Blockchain) -> Optional[Block]:
        """Runs one round: propose, vote, and append the block on a 2/3 majority."""
        logger.info("--- Starting Consensus Round ---")
        if not self.mempool.pending_batches:
            logger.info("Mempool is empty. No block proposed.")
            return None

        batches = self._take_valid_batches(block_size)
        if not batches:
            logger.info("No valid batches pending. No block proposed.")
            return None

        # 1. Propose Block
        speaker = self.speaker
        logger.info(f"Speaker is Validator {speaker.validator_id}")
        head = blockchain.head
        proposed_block = Block(
            block_num=head.block_num + 1,
            previous_block_id=head.block_id,
            batches=batches,
            signer_public_key=speaker.public_key,
        )
        proposed_block.header_signature = speaker.signer.sign(proposed_block.header_bytes())

        # 2. Vote on Block
        yes_votes = sum(
            1 for validator in self.validators
            if validator.cast_vote(proposed_block, head.block_id)
        )
        logger.info(f"Voting Result: {yes_votes} / {len(self.validators)} YES votes.")

        self.speaker_idx = (self.speaker_idx + 1) % len(self.validators)

        # 3. Check for Consensus
        if 3 * yes_votes >= 2 * len(self.validators):
            logger.info("CONSENSUS REACHED. Block is finalized.")
            blockchain.add_block(proposed_block)
            return proposed_block

        logger.warning(f"CONSENSUS FAILED. Block {proposed_block.block_num} is rejected.")
        # Re-add batches to mempool for next round
        self.mempool.requeue(batches)
        return None
