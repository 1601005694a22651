"""Configuration management using Pydantic Settings"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine configuration loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = "sqlite:///./cashflow.db"

    # Service
    service_name: str = "cashflow-engine"
    log_level: str = "INFO"

    # Recurrence detection
    min_transactions: int = 3
    min_group_size: int = 3
    weak_group_size: int = 2
    weak_confidence_factor: float = 0.5
    amount_tolerance: float = 0.05  # relative to the average of both amounts
    description_similarity: float = 0.70  # Jaccard over description tokens
    max_interval_cv: float = 0.30
    label_max_length: int = 50

    # Recurrence management
    suggestion_limit: int = 20
    suggestion_amount_tolerance: float = 0.10
    suggestion_lookback_days: int = 180

    # Projection
    lookback_days: int = 365
    default_horizon_weeks: int = 12
    max_horizon_weeks: int = 104
    default_simulations: int = 1000
    min_simulations: int = 100
    max_simulations: int = 100_000
    checkpoint_count: int = 12
    residual_sd_cap: float = 50.0  # currency units per day
    residual_mode: str = "historical"  # "historical" keeps the drift, "zero" removes it
    simulation_workers: int = 1
    simulation_chunk_size: int = 250


settings = Settings()
