# block_list.py
"""
Rendering for the `block list` and `block show` commands.
"""
from typing import Any, Dict, Iterable, List
import csv
import io
import json

import yaml

from data_structures import Block

HEADERS = ["NUM", "BLOCK_ID", "BATS", "TXNS", "SIGNER"]
FORMATS = ["default", "csv", "json", "yaml"]
SIGNER_PREFIX_LENGTH = 6


class FormatError(Exception):
    """Raised for an unknown output format."""


def block_summary(block: Block) -> Dict[str, Any]:
    return {
        "num": block.block_num,
        "block_id": block.block_id,
        "batches": len(block.batches),
        "transactions": block.transaction_count,
        "signer": block.signer_public_key,
    }


def truncate_signer(public_key: str) -> str:
    return public_key[:SIGNER_PREFIX_LENGTH] + "..."


def format_terminal_table(rows: List[List[str]]) -> str:
    """Left-aligns every column to its widest cell; the last column is not padded."""
    table = [HEADERS] + rows
    widths = [max(len(row[i]) for row in table) for i in range(len(HEADERS))]
    lines = []
    for row in table:
        cells = [cell.ljust(width) for cell, width in zip(row[:-1], widths[:-1])]
        cells.append(row[-1])
        lines.append("  ".join(cells))
    return "\n".join(lines)


def format_block_list(blocks: Iterable[Block], fmt: str = "default") -> str:
    summaries = [block_summary(block) for block in blocks]

    if fmt == "default":
        rows = [
            [str(s["num"]), s["block_id"], str(s["batches"]),
             str(s["transactions"]), truncate_signer(s["signer"])]
            for s in summaries
        ]
        return format_terminal_table(rows)

    if fmt == "csv":
        out = io.StringIO()
        writer = csv.writer(out, lineterminator="\n")
        writer.writerow(HEADERS)
        for s in summaries:
            writer.writerow([s["num"], s["block_id"], s["batches"], s["transactions"], s["signer"]])
        return out.getvalue().rstrip("\n")

    if fmt == "json":
        return json.dumps(summaries, indent=2)

    if fmt == "yaml":
        return yaml.safe_dump(summaries, default_flow_style=False, sort_keys=False).rstrip("\n")

    raise FormatError(f"Unknown format: {fmt}")


def block_details(block: Block) -> Dict[str, Any]:
    return {
        "header": {
            "block_num": block.block_num,
            "previous_block_id": block.previous_block_id,
            "signer_public_key": block.signer_public_key,
            "timestamp": block.timestamp,
        },
        "header_signature": block.block_id,
        "batches": [
            {
                "header_signature": batch.header_signature,
                "signer_public_key": batch.signer_public_key,
                "transactions": [
                    {"header_signature": txn.header_signature, "family_name": txn.family_name}
                    for txn in batch.transactions
                ],
            }
            for batch in block.batches
        ],
    }


def format_block(block: Block, fmt: str = "yaml") -> str:
    details = block_details(block)
    if fmt == "json":
        return json.dumps(details, indent=2)
    if fmt == "yaml":
        return yaml.safe_dump(details, default_flow_style=False, sort_keys=False).rstrip("\n")
    raise FormatError(f"Unknown format: {fmt}")
