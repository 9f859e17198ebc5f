"""
Input Validation - checks applied at the storage boundary.

Guards against:
- Keys and hashes of the wrong size reaching the tables
- Tree instance ids outside the unsigned 64-bit range
- Malformed hex given on the command line
"""

from typing import Any, Optional, Tuple

from mtsql.crypto import HASH_SIZE

# =============================================================================
# Constants
# =============================================================================

MIN_MT_ID = 0
# SQLite INTEGER is a signed 64-bit value
MAX_MT_ID = 2**63 - 1


# =============================================================================
# Validation Functions
# =============================================================================


def validate_bytes(
    data: Any,
    name: str,
    expected_length: Optional[int] = None,
) -> Tuple[bool, str]:
    """
    Validate bytes input.
    
    Args:
        data: Data to validate
        name: Field name for error messages
        expected_length: Exact expected length
        
    Returns:
        (is_valid, error_message)
    """
    if not isinstance(data, (bytes, bytearray)):
        return False, f"{name} must be bytes, got {type(data).__name__}"
    
    if expected_length is not None and len(data) != expected_length:
        return False, f"{name} must be {expected_length} bytes, got {len(data)}"
    
    return True, ""


def validate_hash(hash_value: Any, name: str = "hash") -> Tuple[bool, str]:
    """Validate a hash value."""
    return validate_bytes(hash_value, name, expected_length=HASH_SIZE)


def validate_integer(
    value: Any,
    name: str,
    min_val: int,
    max_val: int,
) -> Tuple[bool, str]:
    """
    Validate integer within bounds.
    
    Args:
        value: Value to validate
        name: Field name for errors
        min_val: Minimum allowed value
        max_val: Maximum allowed value
        
    Returns:
        (is_valid, error_message)
    """
    # bool is an int subclass but never a valid id
    if not isinstance(value, int) or isinstance(value, bool):
        return False, f"{name} must be int, got {type(value).__name__}"
    
    if value < min_val:
        return False, f"{name} must be >= {min_val}, got {value}"
    
    if value > max_val:
        return False, f"{name} must be <= {max_val}, got {value}"
    
    return True, ""


def validate_mt_id(mt_id: Any) -> Tuple[bool, str]:
    """Validate a tree instance id."""
    return validate_integer(mt_id, "mt_id", MIN_MT_ID, MAX_MT_ID)


def validate_hex_string(value: Any, name: str, expected_bytes: Optional[int] = None) -> Tuple[bool, str]:
    """
    Validate a hex string (with or without 0x prefix).
    
    Args:
        value: Value to validate
        name: Field name
        expected_bytes: Expected byte length when decoded
        
    Returns:
        (is_valid, error_message)
    """
    if not isinstance(value, str):
        return False, f"{name} must be str, got {type(value).__name__}"
    
    hex_str = value[2:] if value.startswith(("0x", "0X")) else value
    
    if len(hex_str) % 2 != 0:
        return False, f"{name} has odd length, invalid hex"
    
    try:
        bytes.fromhex(hex_str)
    except ValueError:
        return False, f"{name} contains invalid hex characters"
    
    if expected_bytes is not None:
        actual_bytes = len(hex_str) // 2
        if actual_bytes != expected_bytes:
            return False, f"{name} must be {expected_bytes} bytes, got {actual_bytes}"
    
    return True, ""


def require(result: Tuple[bool, str]) -> None:
    """Raise ValueError for a failed validation result."""
    valid, err = result
    if not valid:
        raise ValueError(err)


# =============================================================================
# Module Exports
# =============================================================================

__all__ = [
    "validate_bytes",
    "validate_hash",
    "validate_integer",
    "validate_mt_id",
    "validate_hex_string",
    "require",
    "MIN_MT_ID",
    "MAX_MT_ID",
]
