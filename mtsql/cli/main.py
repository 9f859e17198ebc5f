"""
mtsql CLI - Command Line Interface for Merkle tree SQL storage

Inspect and edit stored nodes and roots, and run a demo session.
"""

import sqlite3
import sys
import tempfile
from contextlib import contextmanager
from pathlib import Path

import click

from mtsql.utils.logger import setup_logging, get_logger

logger = get_logger("cli")


def parse_hash(value: str, name: str) -> bytes:
    """Parse a 32-byte hash given as hex, or fail the command."""
    from mtsql.crypto import HASH_SIZE, hex_to_bytes
    from mtsql.utils.validation import validate_hex_string

    valid, err = validate_hex_string(value, name, HASH_SIZE)
    if not valid:
        raise click.BadParameter(err, param_hint=name)
    return hex_to_bytes(value)


def open_manager(ctx):
    from mtsql.core.storage import StorageManager

    if "manager" not in ctx.obj:
        with storage_errors():
            ctx.obj["manager"] = StorageManager.from_config(ctx.obj["config"])
        ctx.call_on_close(ctx.obj["manager"].close)
    return ctx.obj["manager"]


def fail(message: str):
    click.echo(f"❌ {message}", err=True)
    sys.exit(1)


@contextmanager
def storage_errors(*passthrough):
    """Report database and storage failures as a failed command.

    Errors listed in `passthrough` propagate for the command to handle.
    """
    from mtsql.core.errors import MerkleStorageError

    try:
        yield
    except passthrough:
        raise
    except (MerkleStorageError, sqlite3.Error) as e:
        fail(f"Storage failure: {e}")


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--db", "db_path", default=None, help="Database file (overrides MTSQL_DB_PATH)")
@click.option("--env-file", default=None, help="Load settings from a .env file")
@click.version_option(version="0.1.0")
@click.pass_context
def cli(ctx, debug, db_path, env_file):
    """Merkle tree SQL storage"""
    from mtsql.core.config import load_config

    try:
        config = load_config(env_file, db_path=db_path)
    except (ValueError, FileNotFoundError) as e:
        raise click.UsageError(str(e))

    setup_logging(
        level="DEBUG" if debug else config.log_level,
        log_dir=str(config.log_dir) if config.log_dir else None,
        log_to_file=config.log_dir is not None,
    )

    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@cli.command("init")
@click.pass_context
def init(ctx):
    """Create the node and root tables"""
    manager = open_manager(ctx)
    click.echo(f"✓ Schema ready: {manager.db_path}")


# =============================================================================
# Root Commands
# =============================================================================

@cli.group()
def root():
    """Root hash commands"""
    pass


@root.command("get")
@click.option("--mt-id", required=True, type=click.IntRange(0, 2**63 - 1), help="Tree instance id")
@click.pass_context
def root_get(ctx, mt_id):
    """Show the current root of a tree"""
    from mtsql.crypto import bytes_to_hex
    from mtsql.core.errors import NotFoundError

    storage = open_manager(ctx).storage(mt_id)
    try:
        with storage_errors(NotFoundError):
            current = storage.get_root()
    except NotFoundError:
        fail(f"No root stored for tree {mt_id}")
    click.echo(bytes_to_hex(current))


@root.command("set")
@click.option("--mt-id", required=True, type=click.IntRange(0, 2**63 - 1), help="Tree instance id")
@click.argument("hash_hex", metavar="HASH")
@click.pass_context
def root_set(ctx, mt_id, hash_hex):
    """Replace the current root of a tree"""
    new_root = parse_hash(hash_hex, "HASH")
    storage = open_manager(ctx).storage(mt_id)
    with storage_errors():
        storage.set_root(new_root)
    click.echo(f"✓ Root of tree {mt_id} set")


# =============================================================================
# Node Commands
# =============================================================================

@cli.group()
def node():
    """Node commands"""
    pass


@node.command("get")
@click.option("--mt-id", required=True, type=click.IntRange(0, 2**63 - 1), help="Tree instance id")
@click.argument("key_hex", metavar="KEY")
@click.pass_context
def node_get(ctx, mt_id, key_hex):
    """Show a stored node"""
    from mtsql.core.errors import MalformedRecordError, NotFoundError
    from mtsql.core.node import describe

    key = parse_hash(key_hex, "KEY")
    storage = open_manager(ctx).storage(mt_id)
    try:
        with storage_errors(NotFoundError, MalformedRecordError):
            found = storage.get(key)
    except NotFoundError:
        fail(f"Node {key_hex} not found in tree {mt_id}")
    except MalformedRecordError as e:
        fail(f"Corrupt record: {e}")
    click.echo(describe(found))


@node.command("put-leaf")
@click.option("--mt-id", required=True, type=click.IntRange(0, 2**63 - 1), help="Tree instance id")
@click.argument("key_hex", metavar="KEY")
@click.argument("h_index_hex", metavar="H_INDEX")
@click.argument("h_value_hex", metavar="H_VALUE")
@click.pass_context
def node_put_leaf(ctx, mt_id, key_hex, h_index_hex, h_value_hex):
    """Store a leaf node"""
    from mtsql.core.node import LeafNode

    leaf = LeafNode(parse_hash(h_index_hex, "H_INDEX"), parse_hash(h_value_hex, "H_VALUE"))
    key = parse_hash(key_hex, "KEY")
    storage = open_manager(ctx).storage(mt_id)
    with storage_errors():
        storage.put(key, leaf)
    click.echo("✓ Leaf stored")


@node.command("put-middle")
@click.option("--mt-id", required=True, type=click.IntRange(0, 2**63 - 1), help="Tree instance id")
@click.argument("key_hex", metavar="KEY")
@click.argument("left_hex", metavar="LEFT")
@click.argument("right_hex", metavar="RIGHT")
@click.pass_context
def node_put_middle(ctx, mt_id, key_hex, left_hex, right_hex):
    """Store a middle node"""
    from mtsql.core.node import MiddleNode

    middle = MiddleNode(parse_hash(left_hex, "LEFT"), parse_hash(right_hex, "RIGHT"))
    key = parse_hash(key_hex, "KEY")
    storage = open_manager(ctx).storage(mt_id)
    with storage_errors():
        storage.put(key, middle)
    click.echo("✓ Middle node stored")


@node.command("put-empty")
@click.option("--mt-id", required=True, type=click.IntRange(0, 2**63 - 1), help="Tree instance id")
@click.argument("key_hex", metavar="KEY")
@click.pass_context
def node_put_empty(ctx, mt_id, key_hex):
    """Store an empty node"""
    from mtsql.core.node import EmptyNode

    key = parse_hash(key_hex, "KEY")
    storage = open_manager(ctx).storage(mt_id)
    with storage_errors():
        storage.put(key, EmptyNode())
    click.echo("✓ Empty node stored")


# =============================================================================
# Demo Command
# =============================================================================


@cli.command("demo")
@click.option("--mt-id", default=7, type=click.IntRange(0, 2**63 - 1), help="Tree instance id to use")
def demo(mt_id):
    """Run a storage session against a temporary database"""
    from mtsql.crypto import bytes_to_hex, keccak256, sha256
    from mtsql.core.errors import NotFoundError
    from mtsql.core.node import LeafNode, describe
    from mtsql.core.storage import StorageManager

    click.echo("=" * 60)
    click.echo("  MERKLE TREE SQL STORAGE - DEMO")
    click.echo("=" * 60)
    click.echo()

    with tempfile.TemporaryDirectory() as tmpdir:
        manager = StorageManager(Path(tmpdir))
        try:
            storage = manager.storage(mt_id)

            click.echo(f"🌱 Fresh tree {mt_id}")
            try:
                storage.get_root()
            except NotFoundError:
                click.echo("  ✓ No root yet")

            h1 = keccak256(b"root-1")
            storage.set_root(h1)
            click.echo(f"  ✓ Root set: {bytes_to_hex(storage.get_root())[:18]}...")

            leaf = LeafNode(sha256(b"index"), sha256(b"value"))
            k1 = keccak256(leaf.h_index + leaf.h_value)
            storage.put(k1, leaf)
            click.echo(f"  ✓ Stored {describe(storage.get(k1))[:40]}...")

            h2 = keccak256(b"root-2")
            storage.set_root(h2)
            click.echo(f"  ✓ Root moved: {bytes_to_hex(storage.get_root())[:18]}...")
            click.echo()
            click.echo(f"📊 Nodes in tree {mt_id}: {manager.node_count(mt_id)}")
        finally:
            manager.close()

    click.echo("✅ Demo complete!")


if __name__ == "__main__":
    cli()
