from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    identity_secret: str
    identity_algorithm: str = "HS256"
    identity_token_url: str = "/auth/token"
    redis_url: str = "redis://localhost:6379"
    database_url: str = "sqlite+aiosqlite:///./aarath.db"
    backend_url: str = "http://localhost:8080/api"
    backend_timeout_seconds: float = 10.0
    cors_origins: list[str] = ["http://localhost:3000"]
    # Read-side window for activity feeds, write-side cap per scope
    activity_window: int = 50
    activity_retention: int = 200
    min_increment_ratio: float = 0.01
    enforce_minimum_bid: bool = True
    # "global" keeps one participant pool for every auction, "auction" keys it per room
    participant_scope: str = "global"
    rate_limit_requests: int = 30
    rate_limit_window_seconds: int = 10
    bid_rate_limit: int = 10
    bid_rate_window_seconds: int = 10

    class Config:
        env_file = ".env"

settings = Settings()
