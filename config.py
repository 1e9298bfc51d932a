from enum import Enum

from pydantic_settings import BaseSettings


class Env(Enum):
    local = "local"
    dev = "dev"
    prod = "prod"


class Config(BaseSettings):
    env: Env = Env.local
    db_url: str = "sqlite+aiosqlite:///dinners.db"
    projection_horizon_days: int = 28
    run_scheduler: bool = True
    restrict_to_opted_in: bool = False
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000
