"""
=============================================================================
COMMAND ENCODING
=============================================================================

Every bloomd command is a single text line:

    ┌─────────────────────────────────────────────────────────────────────┐
    │  m  my_filter  key-1  key-2  key-3 \r\n                             │
    │  ─  ─────────  ────────────────────  ────                           │
    │  │      │              │              └── terminator (CRLF)         │
    │  │      │              └── keys, space separated                    │
    │  │      └── filter name, echoed verbatim                            │
    │  └── verb                                                            │
    └─────────────────────────────────────────────────────────────────────┘

    Operation     Verb      Arguments
    ──────────    ──────    ─────────────────────────────────────────────
    create        create    <name> [capacity=N] [prob=F] [in_memory=1]
    drop          drop      <name>
    close         close     <name>
    clear         clear     <name>
    flush         flush     [<name>]
    list          list
    info          info      <name>
    check         c         <name> <key>
    set           s         <name> <key>
    multi check   m         <name> <key> <key> ...
    multi set     b         <name> <key> <key> ...

Tokens are separated by single spaces, so a name or key containing
whitespace would change the meaning of the line. Those are rejected here,
before anything reaches the socket. Clients that need arbitrary keys turn
on pre-hashing (see hashing.py).

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Optional


CRLF = b"\r\n"

DEFAULT_CAPACITY = 0
DEFAULT_PROBABILITY = 0.0
DEFAULT_IN_MEMORY = False


@dataclass
class Command:
    """
    One encoded request line.

    Attributes:
        verb: Protocol verb ("create", "m", ...).
        filter_name: Target filter, or None for list / flush-all.
        args: Remaining tokens after the filter name.
        key_count: Number of keys carried (drives reply validation).
    """

    verb: str
    filter_name: Optional[str] = None
    args: List[str] = field(default_factory=list)
    key_count: int = 0

    @property
    def line(self) -> str:
        """The command line without its terminator."""
        tokens = [self.verb]
        if self.filter_name is not None:
            tokens.append(self.filter_name)
        tokens.extend(self.args)
        return " ".join(tokens)

    def to_bytes(self) -> bytes:
        """Encode for the wire, CRLF terminated."""
        return self.line.encode("utf-8") + CRLF


# =============================================================================
# VALIDATION
# =============================================================================


def _is_token(value: str) -> bool:
    return bool(value) and value.isprintable() and not any(c.isspace() for c in value)


def validate_filter_name(name: str) -> str:
    """
    Check that `name` can be written as a single protocol token.

    Raises:
        ValueError: If the name is empty, contains whitespace, or is not
            printable.
    """
    if not isinstance(name, str) or not _is_token(name):
        raise ValueError(f"Invalid filter name: {name!r}")
    return name


def validate_key(key: str) -> str:
    """Same rules as filter names, applied to keys sent verbatim."""
    if not isinstance(key, str) or not _is_token(key):
        raise ValueError(f"Invalid key: {key!r}")
    return key


def validate_keys(keys: Iterable[str]) -> List[str]:
    """Validate every key of a multi-key command; at least one is required."""
    keys = [validate_key(k) for k in keys]
    if not keys:
        raise ValueError("At least one key is required")
    return keys


def validate_create_params(capacity: int, probability: float) -> None:
    if capacity < 0:
        raise ValueError(f"capacity must be >= 0, got {capacity}")
    if not 0 <= probability < 1:
        raise ValueError(f"probability must be in [0, 1), got {probability}")


# =============================================================================
# ENCODERS
# =============================================================================


def encode_create(
    name: str,
    capacity: int = DEFAULT_CAPACITY,
    probability: float = DEFAULT_PROBABILITY,
    in_memory: bool = DEFAULT_IN_MEMORY,
) -> Command:
    """
    Encode `create`.

    Options equal to the server defaults are left off the line, so
    encode_create("f") is exactly "create f".
    """
    validate_filter_name(name)
    validate_create_params(capacity, probability)

    args = []
    if capacity != DEFAULT_CAPACITY:
        args.append(f"capacity={int(capacity)}")
    if probability != DEFAULT_PROBABILITY:
        args.append(f"prob={float(probability)!r}")
    if in_memory:
        args.append("in_memory=1")
    return Command("create", name, args)


def encode_drop(name: str) -> Command:
    return Command("drop", validate_filter_name(name))


def encode_close(name: str) -> Command:
    return Command("close", validate_filter_name(name))


def encode_clear(name: str) -> Command:
    return Command("clear", validate_filter_name(name))


def encode_flush(name: Optional[str] = None) -> Command:
    """Encode `flush`; without a name the server flushes every filter."""
    if name is None:
        return Command("flush")
    return Command("flush", validate_filter_name(name))


def encode_list() -> Command:
    return Command("list")


def encode_info(name: str) -> Command:
    return Command("info", validate_filter_name(name))


def encode_check(name: str, key: str) -> Command:
    return Command("c", validate_filter_name(name), [validate_key(key)], key_count=1)


def encode_set(name: str, key: str) -> Command:
    return Command("s", validate_filter_name(name), [validate_key(key)], key_count=1)


def encode_multi_check(name: str, keys: Iterable[str]) -> Command:
    validate_filter_name(name)
    keys = validate_keys(keys)
    return Command("m", name, keys, key_count=len(keys))


def encode_multi_set(name: str, keys: Iterable[str]) -> Command:
    validate_filter_name(name)
    keys = validate_keys(keys)
    return Command("b", name, keys, key_count=len(keys))
