"""Runtime configuration, read from the environment and an optional .env file."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Client settings. Every field can be set as ``ZKNOTE_<NAME>``."""

    model_config = SettingsConfigDict(env_prefix="ZKNOTE_", env_file=".env", extra="ignore")

    # Pool
    merkle_tree_height: int = Field(default=20, ge=1, le=32, description="Commitment tree height")
    network_id: int = Field(default=1, ge=0, description="Network id written into notes")
    native_currency: str = Field(default="eth", description="Currency whose withdrawals must carry no refund")
    pool_currency: Optional[str] = Field(default=None, description="Currency held by the pool (default: native currency)")
    decimals: int = Field(default=18, ge=0, description="Base-unit decimals of the pool currency")
    denomination: int = Field(default=10**18, gt=0, description="Deposit value in base units")
    root_history_size: int = Field(default=30, ge=1, description="Recent roots accepted by the ledger")

    # Ledger
    database_url: str = Field(default="sqlite:///zknote_ledger.db", description="Local ledger database URL")

    # Prover
    snarkjs_bin: str = Field(default="snarkjs", description="snarkjs executable")
    circuit_wasm: str = Field(default="circuits/withdraw.wasm", description="Compiled withdrawal circuit")
    proving_key: str = Field(default="circuits/withdraw_final.zkey", description="Groth16 proving key")
    verification_key: str = Field(default="circuits/verification_key.json", description="Groth16 verification key")
    prover_timeout: Optional[float] = Field(default=None, gt=0, description="Seconds before proving is aborted")

    log_level: str = Field(default="INFO", description="Root log level for the API process")

    @property
    def native_pool(self) -> bool:
        """True if the pool holds the native currency."""
        return self.pool_currency is None or self.pool_currency.lower() == self.native_currency.lower()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings once per process."""
    return Settings()
