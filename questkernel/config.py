from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "postgresql+asyncpg://localhost:5432/questkernel"
    default_tz: str = "UTC"
    kernel_api_key: str | None = None
    log_level: str = "INFO"

    # Player vitals
    player_max_hp: int = 100

    # Defeat penalty (applied when missed-quest damage empties player HP)
    defeat_gold_loss_pct: float = 0.10  # fraction of gold lost
    defeat_stat_loss_pct: float = 0.05  # fraction of each stat's total value lost
    defeat_level_loss: int = 1  # levels dropped, never below 1

    # Activity log window exposed to readers (log itself is unbounded)
    activity_window: int = 100

    # Seconds after a quest completion during which it can be undone
    undo_window_seconds: float = 20.0

    # Coalescing delay before a batch of documents is written
    persist_debounce_seconds: float = 0.5

    # Backoff before the writer retries a failed write
    persist_retry_seconds: float = 5.0

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
