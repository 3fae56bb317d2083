from relay.config import Settings
from relay.gateway.handler import ChatCompletionsHandler, HandlerOptions
from relay.providers.credentials import CredentialPool
from relay.providers.mock_backend import MockBackend
from relay.providers.openai_compat import OpenAICompatBackend
from relay.providers.quota import QuotaStore, get_redis_client
from relay.providers.request_builder import DefaultRequestBuilder


def get_backend(settings: Settings):
    backend = settings.RELAY_BACKEND.upper()

    if backend == "OPENAI":
        return OpenAICompatBackend(base_url=settings.RELAY_UPSTREAM_BASE_URL)

    return MockBackend()


def build_handler(settings: Settings) -> ChatCompletionsHandler:
    backend = get_backend(settings)
    tokens = settings.upstream_tokens
    if not tokens and isinstance(backend, MockBackend):
        tokens = ["mock-token"]

    return ChatCompletionsHandler(
        credentials=CredentialPool(tokens),
        quotas=QuotaStore(backend.fetch_quotas, redis_client=get_redis_client()),
        backend=backend,
        builder=DefaultRequestBuilder(),
        options=HandlerOptions.from_settings(settings),
    )
