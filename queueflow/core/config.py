from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    PROJECT_NAME: str = "QueueFlow"
    API_V1_STR: str = "/api/v1"
    LOG_LEVEL: str = "INFO"
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_URL: Optional[str] = None
    PUBLISH_SNAPSHOTS: bool = False
    SNAPSHOT_CHANNEL_PREFIX: str = "queueflow:snapshot"
    ESTIMATOR_TIMEOUT_SECONDS: float = 2.0
    ESTIMATOR_CONFIDENCE_FLOOR: float = 0.3
    OPTIMISTIC_RETRY_LIMIT: int = 5
    PRIORITY_BOOST_POINTS: float = 50.0

    class Config:
        case_sensitive = True
        env_file = ".env"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if not self.REDIS_URL:
            self.REDIS_URL = f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/0"

settings = Settings()
