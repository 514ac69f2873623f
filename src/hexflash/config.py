"""
hexflash Configuration
======================

Settings for a flashing run. Configuration can come from:
- Default values (defined here)
- Environment variables
- Command-line options (applied by the CLI on top of the environment)

Environment variables (all optional):
    HEXFLASH_PORT: Serial port device
    HEXFLASH_BAUD: Baud rate (integer)
    HEXFLASH_TIMEOUT: Acknowledgement read timeout in seconds
    HEXFLASH_RETRIES: Maximum send attempts per record
    HEXFLASH_ACK: Acknowledgement specification (see AckTable.parse)
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from hexflash.comms.serial import DEFAULT_BAUD_RATE, DEFAULT_TIMEOUT
from hexflash.comms.session import AckTable, RetryPolicy
from hexflash.ihex.encoder import DEFAULT_CHUNK_SIZE

logger = logging.getLogger(__name__)

# Acknowledgement used for every record type unless configured
DEFAULT_ACK = "."


@dataclass
class FlashConfig:
    """
    Configuration for one flashing run.

    Attributes:
        port: Serial port device (None = auto-detect)
        baud_rate: Link speed (default: 115200)
        timeout: Read timeout per acknowledgement wait, seconds (default: 1.0)
        chunk_size: Image bytes per data record (default: 255)
        max_attempts: Send attempts per record before giving up (default: 10)
        retry_delay: Pause after the first failed attempt, seconds (default: 0.05)
        backoff_factor: Growth of the pause per failure (default: 2.0)
        max_retry_delay: Longest pause between attempts, seconds (default: 1.0)
        ack: Acknowledgement specification (default: "." for every type)
    """

    port: Optional[str] = None
    baud_rate: int = DEFAULT_BAUD_RATE
    timeout: float = DEFAULT_TIMEOUT
    chunk_size: int = DEFAULT_CHUNK_SIZE
    max_attempts: int = 10
    retry_delay: float = 0.05
    backoff_factor: float = 2.0
    max_retry_delay: float = 1.0
    ack: str = DEFAULT_ACK

    @classmethod
    def from_env(cls) -> "FlashConfig":
        """
        Create FlashConfig from environment variables.

        Invalid numeric values are logged and ignored.
        """
        config = cls()

        if port := os.environ.get("HEXFLASH_PORT"):
            config.port = port

        if baud := os.environ.get("HEXFLASH_BAUD"):
            try:
                config.baud_rate = int(baud)
            except ValueError:
                logger.warning("Ignoring invalid HEXFLASH_BAUD: %r", baud)

        if timeout := os.environ.get("HEXFLASH_TIMEOUT"):
            try:
                config.timeout = float(timeout)
            except ValueError:
                logger.warning("Ignoring invalid HEXFLASH_TIMEOUT: %r", timeout)

        if retries := os.environ.get("HEXFLASH_RETRIES"):
            try:
                config.max_attempts = int(retries)
            except ValueError:
                logger.warning("Ignoring invalid HEXFLASH_RETRIES: %r", retries)

        if ack := os.environ.get("HEXFLASH_ACK"):
            config.ack = ack

        return config

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            initial_delay=self.retry_delay,
            backoff_factor=self.backoff_factor,
            max_delay=self.max_retry_delay,
        )

    def ack_table(self) -> AckTable:
        """
        Build the acknowledgement table.

        Raises:
            ValueError: If the ack specification is invalid.
        """
        return AckTable.parse(self.ack, default=DEFAULT_ACK)
