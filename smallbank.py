# smallbank.py
"""
Smallbank workload playlists.

A playlist is a YAML list of smallbank payloads: `num_accounts` create_account
entries followed by `num_transactions` randomly chosen operations against
those accounts. Playlists can be turned into signed transactions for
submission to the chain.
"""
from typing import Any, Dict, Iterator, List, Optional, TextIO
import hashlib
import logging
import time

import numpy as np
import yaml

from data_structures import Transaction, canonical_bytes
from blockchain_core import sign_transaction
from signing import Signer

logger = logging.getLogger("smallchain.smallbank")

FAMILY_NAME = "smallbank"
FAMILY_VERSION = "1.0"
NAMESPACE = hashlib.sha512(FAMILY_NAME.encode()).hexdigest()[:6]

INITIAL_BALANCE = 1000000
MIN_AMOUNT = 10
MAX_AMOUNT = 200

CREATE_ACCOUNT = "create_account"
DEPOSIT_CHECKING = "deposit_checking"
WRITE_CHECK = "write_check"
TRANSACT_SAVINGS = "transact_savings"
SEND_PAYMENT = "send_payment"
AMALGAMATE = "amalgamate"

# Random operations, in the order they are drawn from the generator.
OPERATIONS = [DEPOSIT_CHECKING, WRITE_CHECK, TRANSACT_SAVINGS, SEND_PAYMENT, AMALGAMATE]
TWO_PARTY = {SEND_PAYMENT, AMALGAMATE}

REQUIRED_FIELDS = {
    CREATE_ACCOUNT: ("customer_id", "customer_name",
                     "initial_savings_balance", "initial_checking_balance"),
    DEPOSIT_CHECKING: ("customer_id", "amount"),
    WRITE_CHECK: ("customer_id", "amount"),
    TRANSACT_SAVINGS: ("customer_id", "amount"),
    SEND_PAYMENT: ("source_customer_id", "dest_customer_id", "amount"),
    AMALGAMATE: ("source_customer_id", "dest_customer_id"),
}


class PlaylistError(Exception):
    """Raised when a playlist cannot be generated, read, or processed."""


def create_playlist(num_accounts: int, num_transactions: int,
                    seed: Optional[int] = None) -> Iterator[Dict[str, Any]]:
    """
    Yields smallbank payloads.

    Args:
        num_accounts: Number of create_account payloads to emit first
        num_transactions: Number of random operations that follow
        seed: Optional seed for repeatable output

    Returns:
        Iterator of payload dictionaries
    """
    if num_accounts < 0 or num_transactions < 0:
        raise PlaylistError("Account and transaction counts must be non-negative")
    if num_transactions > 0 and num_accounts < 2:
        raise PlaylistError("At least two accounts are needed to generate transactions")

    rng = np.random.default_rng(seed)

    for customer_id in range(num_accounts):
        yield {
            "transaction_type": CREATE_ACCOUNT,
            "customer_id": customer_id,
            "customer_name": f"customer_{customer_id:06d}",
            "initial_savings_balance": INITIAL_BALANCE,
            "initial_checking_balance": INITIAL_BALANCE,
        }

    for _ in range(num_transactions):
        operation = OPERATIONS[int(rng.integers(0, len(OPERATIONS)))]
        yield _make_operation(rng, operation, num_accounts)


def _make_operation(rng: np.random.Generator, operation: str, num_accounts: int) -> Dict[str, Any]:
    if operation in TWO_PARTY:
        source_id = int(rng.integers(0, num_accounts))
        dest_id = _next_non_matching(rng, num_accounts, source_id)
        payload = {
            "transaction_type": operation,
            "source_customer_id": source_id,
            "dest_customer_id": dest_id,
        }
        if operation == SEND_PAYMENT:
            payload["amount"] = int(rng.integers(MIN_AMOUNT, MAX_AMOUNT))
        return payload

    return {
        "transaction_type": operation,
        "customer_id": int(rng.integers(0, num_accounts)),
        "amount": int(rng.integers(MIN_AMOUNT, MAX_AMOUNT)),
    }


def _next_non_matching(rng: np.random.Generator, upper: int, exclude: int) -> int:
    selected = exclude
    while selected == exclude:
        selected = int(rng.integers(0, upper))
    return selected


def write_playlist(output: TextIO, payloads) -> int:
    """Dumps payloads as a YAML list and returns how many were written."""
    payloads = list(payloads)
    try:
        yaml.safe_dump(payloads, output, default_flow_style=False, sort_keys=False)
    except yaml.YAMLError as e:
        raise PlaylistError(f"Error occurred generating YAML output: {e}") from e
    return len(payloads)


def read_playlist(playlist_input: TextIO) -> List[Dict[str, Any]]:
    try:
        data = yaml.safe_load(playlist_input)
    except yaml.YAMLError as e:
        raise PlaylistError(f"Error occurred reading YAML input: {e}") from e
    if data is None:
        return []
    if not isinstance(data, list):
        raise PlaylistError("Playlist must be a YAML list")
    for index, entry in enumerate(data):
        validate_payload(entry, index)
    return data


def validate_payload(entry: Any, index: int = 0):
    if not isinstance(entry, dict):
        raise PlaylistError(f"Playlist entry {index} should be a mapping")
    txn_type = entry.get("transaction_type")
    if txn_type is None:
        raise PlaylistError(f"Playlist entry {index}: no transaction_type specified")
    if txn_type not in REQUIRED_FIELDS:
        raise PlaylistError(f"Playlist entry {index}: unknown transaction_type: {txn_type}")
    missing = [name for name in REQUIRED_FIELDS[txn_type] if name not in entry]
    if missing:
        raise PlaylistError(f"Playlist entry {index}: missing {', '.join(missing)}")


def customer_id_address(customer_id: int) -> str:
    digest = hashlib.sha512(str(customer_id).encode()).hexdigest()
    return NAMESPACE + digest[:64]


def make_addresses(payload: Dict[str, Any]) -> List[str]:
    if payload["transaction_type"] in TWO_PARTY:
        return [customer_id_address(payload["source_customer_id"]),
                customer_id_address(payload["dest_customer_id"])]
    return [customer_id_address(payload["customer_id"])]


def process_playlist(payloads: List[Dict[str, Any]], signer: Signer) -> List[Transaction]:
    """Creates signed smallbank transactions, one per playlist payload."""
    transactions = []
    start = time.perf_counter_ns()
    for index, payload in enumerate(payloads):
        validate_payload(payload, index)
        addresses = make_addresses(payload)
        elapsed = time.perf_counter_ns() - start
        transaction = Transaction(
            family_name=FAMILY_NAME,
            family_version=FAMILY_VERSION,
            inputs=list(addresses),
            outputs=list(addresses),
            nonce=f"{elapsed}.{index}",
            payload=canonical_bytes(payload),
            signer_public_key=signer.public_key_hex,
            batcher_public_key=signer.public_key_hex,
        )
        transactions.append(sign_transaction(transaction, signer))
    logger.info(f"Signed {len(transactions)} smallbank transactions")
    return transactions
