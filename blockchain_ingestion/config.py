from pydantic import validator
from pydantic_settings import BaseSettings
from typing import Optional, Dict, Any


class Settings(BaseSettings):
    # Database
    DB_USER: str = "user"
    DB_PASSWORD: str = "password"
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "blockchain"
    DATABASE_URL: Optional[str] = None

    @validator("DATABASE_URL", pre=True, always=True)
    def assemble_db_connection(cls, v: Optional[str], values: Dict[str, Any]) -> Any:
        if isinstance(v, str):
            return v
        return (
            f"postgresql+psycopg2://{values.get('DB_USER')}:{values.get('DB_PASSWORD')}@"
            f"{values.get('DB_HOST')}:{values.get('DB_PORT')}/{values.get('DB_NAME')}"
        )

    DB_POOL_SIZE: int = 5

    # Ethereum RPC
    ETH_RPC_URL: str = "https://rpc.ankr.com/eth"
    RPC_REQUEST_TIMEOUT: int = 30
    RPC_MAX_RETRIES: int = 3
    RPC_RETRY_BASE_DELAY: float = 1.0
    RPC_RETRY_MAX_DELAY: float = 30.0
    POA_CHAIN: bool = False  # Inject extraData middleware for PoA chains
    FETCH_RECEIPTS: bool = False  # Take gasUsed/status from receipts instead of the tx gas limit

    # Ingestion settings
    DEFAULT_BLOCK_COUNT: int = 10
    TEST_BLOCK_COUNT: int = 3

    # Monitoring
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
