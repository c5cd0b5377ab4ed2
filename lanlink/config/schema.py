"""Configuration schema using Pydantic."""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings


class Base(BaseModel):
    """Base model that accepts both camelCase and snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class KeyDerivationConfig(Base):
    """How the shared AES key is obtained."""

    password: str = "password"     # Shared secret both devices derive the key from
    salt: str = "salt"
    iterations: int = Field(default=5000, gt=0)  # PBKDF2-HMAC-SHA256 rounds
    key: str = ""                  # Hex key; when set, password/salt are ignored


class PairingConfig(Base):
    """Pairing code and directory settings."""

    ttl_ms: int = Field(default=8 * 60 * 60 * 1000, gt=0)  # Code/pairing lifetime (8 hours)
    key_prefix: str = "pairingInfo"   # Storage keys: <prefix>:<ip>:<port>
    storage_path: str = ""            # JSON file for pairings. Empty = in-memory only
    sweep_interval: int = 300         # Seconds between expired-pairing sweeps. 0 = disabled
    device_name: str = ""             # Shown to peers; default "Device: <ip>"


class LanLinkConfig(BaseSettings):
    """Root configuration for a lanlink node."""

    model_config = ConfigDict(env_prefix="LANLINK_", env_nested_delimiter="__")

    host: str = "0.0.0.0"           # Interface the UDP socket binds on
    port: int = 12345               # UDP port. 0 = OS-assigned
    request_timeout_ms: int = Field(default=5000, gt=0)
    crypto: KeyDerivationConfig = Field(default_factory=KeyDerivationConfig)
    pairing: PairingConfig = Field(default_factory=PairingConfig)

    @property
    def storage_path(self) -> Path | None:
        """Expanded pairing storage path, or ``None`` for in-memory storage."""
        if not self.pairing.storage_path:
            return None
        return Path(self.pairing.storage_path).expanduser()
