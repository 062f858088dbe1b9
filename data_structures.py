# data_structures.py
from dataclasses import dataclass, field
from typing import List, Dict, Any
import hashlib
import json
import time

NULL_BLOCK_IDENTIFIER = "0000000000000000"


def canonical_bytes(fields: Dict[str, Any]) -> bytes:
    """Serializes header fields the same way every time so signatures are stable."""
    return json.dumps(fields, sort_keys=True, separators=(",", ":")).encode()


@dataclass
class Transaction:
    """A single signed operation for a transaction family."""
    family_name: str
    family_version: str
    inputs: List[str]
    outputs: List[str]
    nonce: str
    payload: bytes
    signer_public_key: str
    batcher_public_key: str
    payload_sha512: str = ""
    header_signature: str = ""

    def __post_init__(self):
        if not self.payload_sha512:
            self.payload_sha512 = hashlib.sha512(self.payload).hexdigest()

    def header(self) -> Dict[str, Any]:
        return {
            "family_name": self.family_name,
            "family_version": self.family_version,
            "inputs": list(self.inputs),
            "outputs": list(self.outputs),
            "nonce": self.nonce,
            "payload_sha512": self.payload_sha512,
            "signer_public_key": self.signer_public_key,
            "batcher_public_key": self.batcher_public_key,
        }

    def header_bytes(self) -> bytes:
        return canonical_bytes(self.header())

    def to_dict(self) -> Dict[str, Any]:
        data = self.header()
        data["payload"] = self.payload.hex()
        data["header_signature"] = self.header_signature
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Transaction":
        return cls(
            family_name=data["family_name"],
            family_version=data["family_version"],
            inputs=list(data["inputs"]),
            outputs=list(data["outputs"]),
            nonce=data["nonce"],
            payload=bytes.fromhex(data["payload"]),
            signer_public_key=data["signer_public_key"],
            batcher_public_key=data["batcher_public_key"],
            payload_sha512=data["payload_sha512"],
            header_signature=data["header_signature"],
        )


@dataclass
class Batch:
    """An atomic group of transactions signed by one batcher."""
    signer_public_key: str
    transactions: List[Transaction]
    header_signature: str = ""

    @property
    def transaction_ids(self) -> List[str]:
        return [txn.header_signature for txn in self.transactions]

    def header_bytes(self) -> bytes:
        return canonical_bytes({
            "signer_public_key": self.signer_public_key,
            "transaction_ids": self.transaction_ids,
        })

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signer_public_key": self.signer_public_key,
            "header_signature": self.header_signature,
            "transactions": [txn.to_dict() for txn in self.transactions],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Batch":
        return cls(
            signer_public_key=data["signer_public_key"],
            transactions=[Transaction.from_dict(t) for t in data["transactions"]],
            header_signature=data["header_signature"],
        )


@dataclass
class Block:
    """Represents a block on the blockchain. Its id is the header signature."""
    block_num: int
    previous_block_id: str
    batches: List[Batch]
    signer_public_key: str = ""
    header_signature: str = ""
    timestamp: float = field(default_factory=time.time)

    @property
    def block_id(self) -> str:
        return self.header_signature

    @property
    def batch_ids(self) -> List[str]:
        return [batch.header_signature for batch in self.batches]

    @property
    def transaction_count(self) -> int:
        return sum(len(batch.transactions) for batch in self.batches)

    def header(self) -> Dict[str, Any]:
        return {
            "block_num": self.block_num,
            "previous_block_id": self.previous_block_id,
            "signer_public_key": self.signer_public_key,
            "batch_ids": self.batch_ids,
            "timestamp": self.timestamp,
        }

    def header_bytes(self) -> bytes:
        return canonical_bytes(self.header())

    def to_dict(self) -> Dict[str, Any]:
        data = self.header()
        data["header_signature"] = self.header_signature
        data["batches"] = [batch.to_dict() for batch in self.batches]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Block":
        return cls(
            block_num=int(data["block_num"]),
            previous_block_id=data["previous_block_id"],
            batches=[Batch.from_dict(b) for b in data["batches"]],
            signer_public_key=data["signer_public_key"],
            header_signature=data["header_signature"],
            timestamp=float(data["timestamp"]),
        )
