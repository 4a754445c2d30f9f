"""Client and deployment settings."""

from pydantic import BaseModel, Field

from .constants import DEFAULT_IDENTITY, DEFAULT_PORT, DEFAULT_REMOTE_DIR


class SdbConfig(BaseModel):
    """Connection and deployment settings for one device."""

    host: str = Field(..., min_length=1, description="Device address")
    port: int = Field(DEFAULT_PORT, ge=1, le=65535, description="Daemon TCP port")
    identity: str = Field(DEFAULT_IDENTITY, description="System identity sent in CNXN")
    timeout: float | None = Field(None, gt=0, description="Socket timeout in seconds; None blocks forever")
    verify_checksum: bool = Field(False, description="Reject frames whose payload checksum mismatches")
    remote_dir: str = Field(DEFAULT_REMOTE_DIR, min_length=1, description="Staging directory for pushed packages")

    def remote_path(self, filename: str) -> str:
        """Staging path of a file in ``remote_dir``."""
        return f"{self.remote_dir.rstrip('/')}/{filename}"
