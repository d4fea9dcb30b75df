from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    upstream_base_url: str = "https://treninfo.netlify.app"
    http_timeout_seconds: float = 12.0
    http_max_retries: int = 1
    redis_url: str = "redis://localhost:6379/0"
    tracking_poll_seconds: int = 60
    default_eta_thresholds: list[int] = [10, 3]
    max_tracked_trains: int = 20
    stop_tracking_when_finished: bool = True

    model_config = {"env_prefix": "", "case_sensitive": False}


settings = Settings()
