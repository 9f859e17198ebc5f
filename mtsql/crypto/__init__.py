"""
Hashing helpers for mtsql.

This module provides:
- SHA-256 and Keccak-256 digests (32 bytes, the node key size)
- Hex conversion for keys and roots given on the command line

The storage layer never computes hashes itself; node keys and roots are
supplied by the tree engine. These helpers exist for tooling and demos.
"""

import hashlib

from Crypto.Hash import keccak


# =============================================================================
# Constants
# =============================================================================

# Size of every node key, child reference, entry half and root
HASH_SIZE = 32


# =============================================================================
# Hashing
# =============================================================================


def sha256(data: bytes) -> bytes:
    """Compute SHA-256 hash."""
    return hashlib.sha256(data).digest()


def keccak256(data: bytes) -> bytes:
    """
    Compute Keccak-256 hash (Ethereum-style).
    
    Used for: sample keys and roots in the CLI demo.
    """
    k = keccak.new(digest_bits=256)
    k.update(data)
    return k.digest()


# =============================================================================
# Utility Functions
# =============================================================================


def bytes_to_hex(data: bytes) -> str:
    """Convert bytes to hex string with 0x prefix."""
    return "0x" + data.hex()


def hex_to_bytes(hex_str: str) -> bytes:
    """Convert hex string (with or without 0x prefix) to bytes."""
    if hex_str.startswith("0x") or hex_str.startswith("0X"):
        hex_str = hex_str[2:]
    return bytes.fromhex(hex_str)


def short_hex(data: bytes, length: int = 16) -> str:
    """Abbreviated hex for log lines."""
    return bytes_to_hex(data)[: length + 2] + "..."
