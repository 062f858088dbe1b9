#!/usr/bin/env python3
"""
Command line client for the smallchain ledger.

Examples:
  smallchain keygen
  smallchain genesis
  smallchain playlist create --accounts 10 --transactions 50 --seed 1 -o playlist.yaml
  smallchain workload --playlist playlist.yaml
  smallchain block list
  smallchain block show 0
"""

import argparse
import logging
import os
import sys
from typing import List, Optional

from blockchain_core import (
    Blockchain, ChainError, create_genesis_block, CONSENSUS_ALGORITHM_KEY,
)
from block_list import FORMATS, FormatError, format_block, format_block_list
from config import ConfigError, load_config
from signing import Signer, SigningError
from simulation import SimulationEngine
from smallbank import PlaylistError, create_playlist, read_playlist, write_playlist

logger = logging.getLogger("smallchain")

__version__ = "0.1.0"


def positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"{value} is not an integer")
    if number < 1:
        raise argparse.ArgumentTypeError(f"{value} must be a positive integer")
    return number


def non_negative_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"{value} is not an integer")
    if number < 0:
        raise argparse.ArgumentTypeError(f"{value} must not be negative")
    return number


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="smallchain",
        description="Client for a small permissioned blockchain",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split("Examples:", 1)[1] if __doc__ else None,
    )
    parser.add_argument("--config", "-c", help="Configuration YAML file")
    parser.add_argument("--verbose", "-v", action="count", default=0,
                        help="Increase verbosity (use -vv for debug)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    keygen = subparsers.add_parser("keygen", help="Generate a signing key pair")
    keygen.add_argument("--key-file", help="Private key path (public key goes to <path>.pub)")
    keygen.add_argument("--force", action="store_true", help="Overwrite an existing key")

    genesis = subparsers.add_parser("genesis", help="Create a chain holding only the genesis block")
    genesis.add_argument("--key-file", help="Private key used to sign the genesis block")
    genesis.add_argument("--chain", help="Chain file to create")
    genesis.add_argument("--consensus", help="Consensus algorithm recorded on chain")
    genesis.add_argument("--force", action="store_true", help="Overwrite an existing chain file")

    playlist = subparsers.add_parser("playlist", help="Smallbank workload playlists")
    playlist_sub = playlist.add_subparsers(dest="playlist_command", required=True)
    create = playlist_sub.add_parser("create", help="Generate a smallbank playlist")
    create.add_argument("--accounts", type=non_negative_int, required=True,
                        help="Number of accounts to create")
    create.add_argument("--transactions", type=non_negative_int, required=True,
                        help="Number of transactions after account creation")
    create.add_argument("--seed", type=int, help="Random seed for repeatable output")
    create.add_argument("--output", "-o", help="Output file (default: stdout)")

    workload = subparsers.add_parser("workload", help="Publish a playlist as blocks")
    workload.add_argument("--playlist", required=True, help="Playlist YAML file")
    workload.add_argument("--chain", help="Chain file to extend (created if missing)")
    workload.add_argument("--validators", type=positive_int, help="Number of validators")
    workload.add_argument("--rounds", type=positive_int, help="Maximum consensus rounds")
    workload.add_argument("--block-size", type=positive_int, help="Maximum batches per block")
    workload.add_argument("--batch-size", type=positive_int, help="Transactions per batch")

    block = subparsers.add_parser("block", help="Inspect blocks on the chain")
    block_sub = block.add_subparsers(dest="block_command", required=True)
    list_cmd = block_sub.add_parser("list", help="List blocks, newest first")
    list_cmd.add_argument("--chain", help="Chain file to read")
    list_cmd.add_argument("--count", "-n", type=positive_int, help="Maximum number of blocks to list")
    list_cmd.add_argument("--format", "-F", choices=FORMATS, default="default", help="Output format")
    block_show = block_sub.add_parser("show", help="Show one block")
    block_show.add_argument("block_ref", help="Block number or block id")
    block_show.add_argument("--chain", help="Chain file to read")
    block_show.add_argument("--format", "-F", choices=["yaml", "json"], default="yaml", help="Output format")

    return parser


def setup_logging(verbose: int):
    log_level = logging.WARNING
    if verbose == 1:
        log_level = logging.INFO
    elif verbose >= 2:
        log_level = logging.DEBUG
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def do_keygen(args, config):
    key_file = args.key_file or config["key_file"]
    if os.path.exists(key_file) and not args.force:
        raise SigningError(f"Key file {key_file} already exists (use --force to overwrite)")
    signer = Signer.generate()
    signer.write_key_files(key_file)
    print(signer.public_key_hex)


def do_genesis(args, config):
    chain_file = args.chain or config["chain_file"]
    if os.path.exists(chain_file) and not args.force:
        raise ChainError(f"Chain file {chain_file} already exists (use --force to overwrite)")
    signer = Signer.from_key_file(args.key_file or config["key_file"])
    consensus = args.consensus or config["consensus_algorithm"]
    genesis = create_genesis_block(signer, {CONSENSUS_ALGORITHM_KEY: consensus})
    Blockchain(genesis).save(chain_file)
    print(f"Genesis block {genesis.block_id} written to {chain_file}")


def do_playlist(args, config):
    # Generate everything before the output file is truncated
    payloads = list(create_playlist(args.accounts, args.transactions, args.seed))
    if args.output:
        with open(args.output, "w") as f:
            count = write_playlist(f, payloads)
        logger.info(f"Wrote {count} payloads to {args.output}")
    else:
        write_playlist(sys.stdout, payloads)


def do_workload(args, config):
    chain_file = args.chain or config["chain_file"]
    try:
        with open(args.playlist, "r") as f:
            payloads = read_playlist(f)
    except OSError as e:
        raise PlaylistError(f"Could not read playlist {args.playlist}: {e}") from e

    blockchain = Blockchain.load(chain_file) if os.path.exists(chain_file) else None
    engine = SimulationEngine(args.validators or config["num_validators"], config, blockchain=blockchain)
    published = engine.run_simulation(
        payloads,
        num_rounds=args.rounds or config["num_rounds"],
        block_size=args.block_size or config["block_size"],
        batch_size=args.batch_size or config["batch_size"],
    )
    engine.blockchain.save(chain_file)
    print(f"Published {len(published)} blocks; chain height is {len(engine.blockchain)}")


def do_block(args, config):
    blockchain = Blockchain.load(args.chain or config["chain_file"])
    if args.block_command == "list":
        count = args.count or config["block_list_count"]
        print(format_block_list(blockchain.list_blocks(count), args.format))
    else:
        print(format_block(blockchain.get_block(args.block_ref), args.format))


COMMANDS = {
    "keygen": do_keygen,
    "genesis": do_genesis,
    "playlist": do_playlist,
    "workload": do_workload,
    "block": do_block,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main function."""
    args = create_parser().parse_args(argv)
    setup_logging(args.verbose)

    try:
        config = load_config(args.config)
        COMMANDS[args.command](args, config)
    except (ChainError, PlaylistError, SigningError, ConfigError, FormatError, OSError) as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.info("Operation cancelled by user.")
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
