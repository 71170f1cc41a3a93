"""
=============================================================================
CLIENT CONFIGURATION
=============================================================================

Centralized configuration for both client flavors.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Constructor arguments                                          │
    │      └── Client(host="bloomd:8673", dial_timeout=0.5)              │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── BLOOMD_HOST=bloomd ClientConfig.from_env()                │
    │                                                                      │
    │   3. Default values (in this dataclass)                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Usage:

    config = ClientConfig.from_env()
    client = PooledClient.from_config(config)

=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Optional, Tuple


DEFAULT_HOST = "localhost"
DEFAULT_PORT = 8673


def parse_address(address: str) -> Tuple[str, int]:
    """
    Split "host[:port]" into (host, port).

    The port defaults to 8673. IPv6 literals go in brackets:
    "[::1]:8673".

    Raises:
        ValueError: If the port is not a number in 1-65535.
    """
    address = address.strip()
    if not address:
        return DEFAULT_HOST, DEFAULT_PORT

    if address.startswith("["):
        host, _, rest = address[1:].partition("]")
        port_str = rest[1:] if rest.startswith(":") else ""
    elif address.count(":") == 1:
        host, _, port_str = address.partition(":")
    else:
        host, port_str = address, ""

    host = host or DEFAULT_HOST
    if not port_str:
        return host, DEFAULT_PORT

    try:
        port = int(port_str)
    except ValueError:
        raise ValueError(f"Invalid port in address {address!r}") from None
    if not 0 < port < 65536:
        raise ValueError(f"Invalid port: {port}. Must be 1-65535.")
    return host, port


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ClientConfig:
    """
    Configuration for Client and PooledClient.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK     host, port, timeout, dial_timeout
    RETRY       max_attempts, retry_interval (direct client)
    POOL        initial_conns, max_conns (pooled client)
    KEYS        pre_hash_keys
    LOGGING     log_commands, log_format

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT

    timeout: Optional[float] = 1.0
    """
    Per-call I/O budget in seconds. A context deadline that comes earlier
    wins. None means only the context bounds the call.
    """

    dial_timeout: float = 1.0
    """Seconds allowed for one TCP connect attempt."""

    # ─────────────────────────────────────────────────────────────────────
    # RETRY SETTINGS (direct client)
    # ─────────────────────────────────────────────────────────────────────

    max_attempts: int = 3
    """Dial attempts before UnavailableError. Commands are never retried."""

    retry_interval: float = 0.05
    """Fixed pause between dial attempts, in seconds."""

    # ─────────────────────────────────────────────────────────────────────
    # POOL SETTINGS (pooled client)
    # ─────────────────────────────────────────────────────────────────────

    initial_conns: int = 1
    """Connections dialed eagerly when the pool is built."""

    max_conns: int = 8
    """Hard upper bound on live connections."""

    # ─────────────────────────────────────────────────────────────────────
    # KEYS
    # ─────────────────────────────────────────────────────────────────────

    pre_hash_keys: bool = False
    """Replace every key with its SHA-1 hex digest before sending."""

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_commands: bool = False
    """Emit one record per command on the "bloomd.commands" logger."""

    log_format: str = "text"
    """Command log format: 'text' or 'json'."""

    @property
    def address(self) -> str:
        """Server address as host:port, IPv6 hosts in brackets."""
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"

    @classmethod
    def from_env(cls) -> "ClientConfig":
        """
        Create configuration from environment variables.

        BLOOMD_HOST           host or host:port (default: localhost)
        BLOOMD_PORT           port, overrides one given in BLOOMD_HOST
        BLOOMD_TIMEOUT        per-call timeout in seconds (default: 1)
        BLOOMD_DIAL_TIMEOUT   connect timeout in seconds (default: 1)
        BLOOMD_MAX_ATTEMPTS   dial attempts (default: 3)
        BLOOMD_PRE_HASH       1/true to pre-hash keys
        BLOOMD_INITIAL_CONNS  eager pool size (default: 1)
        BLOOMD_MAX_CONNS      pool limit (default: 8)
        BLOOMD_LOG_COMMANDS   1/true to log every command
        BLOOMD_LOG_FORMAT     text or json
        """
        host, port = parse_address(os.getenv("BLOOMD_HOST", DEFAULT_HOST))
        if os.getenv("BLOOMD_PORT"):
            port = int(os.environ["BLOOMD_PORT"])

        return cls(
            host=host,
            port=port,
            timeout=float(os.getenv("BLOOMD_TIMEOUT", "1")),
            dial_timeout=float(os.getenv("BLOOMD_DIAL_TIMEOUT", "1")),
            max_attempts=int(os.getenv("BLOOMD_MAX_ATTEMPTS", "3")),
            pre_hash_keys=_env_bool("BLOOMD_PRE_HASH", False),
            initial_conns=int(os.getenv("BLOOMD_INITIAL_CONNS", "1")),
            max_conns=int(os.getenv("BLOOMD_MAX_CONNS", "8")),
            log_commands=_env_bool("BLOOMD_LOG_COMMANDS", False),
            log_format=os.getenv("BLOOMD_LOG_FORMAT", "text"),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Called by the clients at construction so bad settings fail at
        startup rather than on the first command.
        """
        if not self.host:
            raise ValueError("host must not be empty")

        if not 0 < self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 1-65535.")

        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be > 0")

        if self.dial_timeout <= 0:
            raise ValueError("dial_timeout must be > 0")

        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        if self.retry_interval < 0:
            raise ValueError("retry_interval must be >= 0")

        if self.initial_conns < 0:
            raise ValueError("initial_conns must be >= 0")

        if self.max_conns < 1:
            raise ValueError("max_conns must be >= 1")

        if self.initial_conns > self.max_conns:
            raise ValueError("initial_conns must be <= max_conns")

        if self.log_format not in ("text", "json"):
            raise ValueError(f"log_format must be 'text' or 'json', got {self.log_format!r}")
