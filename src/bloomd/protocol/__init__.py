"""
=============================================================================
BLOOMD WIRE PROTOCOL
=============================================================================

Pure encode/parse functions for the bloomd text protocol. Nothing in this
package touches a socket:

    commands.py    Operation → Command (one CRLF terminated line)
    responses.py   Reply lines → Reply / list[bool] / dict[str, str]
    status.py      Fixed reply lines and server error mapping
    hashing.py     Optional key pre-hash

=============================================================================
"""

from .commands import (
    Command,
    encode_check,
    encode_clear,
    encode_close,
    encode_create,
    encode_drop,
    encode_flush,
    encode_info,
    encode_list,
    encode_multi_check,
    encode_multi_set,
    encode_set,
    validate_create_params,
    validate_filter_name,
    validate_key,
    validate_keys,
)
from .hashing import hash_key
from .responses import parse_block, parse_bools, parse_info, parse_list, parse_status
from .status import Reply, error_for_line

__all__ = [
    "Command",
    "Reply",
    "encode_check",
    "encode_clear",
    "encode_close",
    "encode_create",
    "encode_drop",
    "encode_flush",
    "encode_info",
    "encode_list",
    "encode_multi_check",
    "encode_multi_set",
    "encode_set",
    "error_for_line",
    "hash_key",
    "parse_block",
    "parse_bools",
    "parse_info",
    "parse_list",
    "parse_status",
    "validate_create_params",
    "validate_filter_name",
    "validate_key",
    "validate_keys",
]
