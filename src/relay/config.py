from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    # Comma-separated client API keys
    RELAY_API_KEYS: str = ""

    # Backend selection: MOCK or OPENAI
    RELAY_BACKEND: str = "MOCK"
    RELAY_UPSTREAM_BASE_URL: str = "https://api.openai.com/v1"
    RELAY_UPSTREAM_TOKENS: str = ""

    # Retry / rotation
    RELAY_RETRY_TIMES: int = 3
    RELAY_RETRY_DELAY_SECONDS: float = 0.0

    # Response shaping
    RELAY_FAKE_NON_STREAM: bool = False
    RELAY_PASS_SIGNATURE_TO_CLIENT: bool = False
    RELAY_HEARTBEAT_INTERVAL: float = 15.0

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def api_keys(self) -> List[str]:
        return _split(self.RELAY_API_KEYS)

    @property
    def upstream_tokens(self) -> List[str]:
        return _split(self.RELAY_UPSTREAM_TOKENS)


def _split(raw: str) -> List[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


settings = Settings()
