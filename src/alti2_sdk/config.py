"""
Session Configuration
=====================

Timing and link settings for an Alti-2 session. Configuration can come
from:
- Default values (defined here)
- Environment variables (SessionConfig.from_env)
- Explicit keyword arguments (dataclasses.replace or the constructor)

The defaults follow observed device behaviour:
- The device needs about 10 seconds after the port opens before it
  answers the identification request.
- Responses start roughly 100ms after a request is written.
- A response may take several seconds while the device is busy.
"""

from dataclasses import dataclass
from typing import Final, Optional
import logging
import os

logger = logging.getLogger(__name__)

# Serial link speed used by every known Alti-2 instrument
DEFAULT_BAUD_RATE: Final[int] = 57600


@dataclass
class SessionConfig:
    """
    Configuration for an Alti-2 session.

    Attributes:
        timeout: Per-transaction response deadline in seconds (default: 10.0)
        max_retries: Send attempts per transaction before giving up (default: 3)
        retry_delay: Pause between attempts in seconds (default: 0.1)
        response_delay: Pause after writing a request (default: 0.1)
        settle_time: Pause after opening the port, before the handshake (default: 10.0)
        read_chunk_size: Maximum bytes requested per channel read (default: 512)
        max_pages: Upper bound on logbook pages per dump (default: 1024)
        baud_rate: Serial speed for SerialChannel (default: 57600)
        port: Serial device path, None to auto-detect
    """

    # ═══════════════════════════════════════════════════════════════════════════
    # TRANSACTION TIMING
    # ═══════════════════════════════════════════════════════════════════════════

    timeout: float = 10.0
    max_retries: int = 3
    retry_delay: float = 0.1
    response_delay: float = 0.1

    # ═══════════════════════════════════════════════════════════════════════════
    # SESSION
    # ═══════════════════════════════════════════════════════════════════════════

    settle_time: float = 10.0
    read_chunk_size: int = 512
    max_pages: int = 1024

    # ═══════════════════════════════════════════════════════════════════════════
    # SERIAL PORT
    # ═══════════════════════════════════════════════════════════════════════════

    baud_rate: int = DEFAULT_BAUD_RATE
    port: Optional[str] = None

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {self.max_retries}")
        if self.read_chunk_size < 1:
            raise ValueError(f"read_chunk_size must be positive, got {self.read_chunk_size}")
        if self.max_pages < 1:
            raise ValueError(f"max_pages must be positive, got {self.max_pages}")

    @classmethod
    def from_env(cls) -> "SessionConfig":
        """
        Create SessionConfig from environment variables.

        Environment variables (all optional):
            ALTI2_TIMEOUT: Transaction timeout in seconds (float)
            ALTI2_MAX_RETRIES: Send attempts per transaction (integer)
            ALTI2_RETRY_DELAY: Pause between attempts in seconds (float)
            ALTI2_SETTLE_TIME: Pause before the handshake in seconds (float)
            ALTI2_PORT: Serial device path

        Invalid values are ignored and the default is kept.

        Returns:
            SessionConfig with values from environment variables
        """
        config = cls()

        if timeout := os.environ.get("ALTI2_TIMEOUT"):
            try:
                value = float(timeout)
                if value > 0:
                    config.timeout = value
            except ValueError:
                logger.warning("Ignoring invalid ALTI2_TIMEOUT=%r", timeout)

        if retries := os.environ.get("ALTI2_MAX_RETRIES"):
            try:
                value = int(retries)
                if value >= 1:
                    config.max_retries = value
            except ValueError:
                logger.warning("Ignoring invalid ALTI2_MAX_RETRIES=%r", retries)

        if delay := os.environ.get("ALTI2_RETRY_DELAY"):
            try:
                config.retry_delay = max(0.0, float(delay))
            except ValueError:
                logger.warning("Ignoring invalid ALTI2_RETRY_DELAY=%r", delay)

        if settle := os.environ.get("ALTI2_SETTLE_TIME"):
            try:
                config.settle_time = max(0.0, float(settle))
            except ValueError:
                logger.warning("Ignoring invalid ALTI2_SETTLE_TIME=%r", settle)

        if port := os.environ.get("ALTI2_PORT"):
            config.port = port

        return config
