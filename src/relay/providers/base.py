from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional

from relay.models.events import BackendCompletion, BackendEvent, Credential

EventCallback = Callable[[BackendEvent], Awaitable[None]]


class CredentialSource(ABC):
    @abstractmethod
    async def get_credential(self, model: str) -> Optional[Credential]:
        """
        Returns the next usable credential for the model, or None.
        """
        raise NotImplementedError

    def get_credential_id(self, credential: Credential) -> str:
        return credential.credential_id

    @abstractmethod
    async def record_usage_attempt(self, credential: Credential, model: str) -> None:
        raise NotImplementedError


class QuotaSource(ABC):
    @abstractmethod
    async def fetch_quotas(self, credential: Credential) -> Dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    async def update_quota(self, credential_id: str, quotas: Dict[str, Any]) -> None:
        raise NotImplementedError


class BackendTransport(ABC):
    @abstractmethod
    async def generate_streaming(
        self,
        request: Dict[str, Any],
        credential: Credential,
        on_event: EventCallback,
    ) -> None:
        """
        Streams the generation, awaiting on_event once per backend event
        in arrival order. Raises on failure; errors carry status_code.
        """
        raise NotImplementedError

    @abstractmethod
    async def generate_once(
        self,
        request: Dict[str, Any],
        credential: Credential,
    ) -> BackendCompletion:
        raise NotImplementedError


class RequestBuilder(ABC):
    @abstractmethod
    def build_backend_request(
        self,
        messages: List[Dict[str, Any]],
        model: str,
        params: Dict[str, Any],
        tools: Optional[List[Dict[str, Any]]],
        credential: Credential,
    ) -> Dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def augment_for_image_model(self, request: Dict[str, Any]) -> None:
        """Adjusts the request in place for image-generation models."""
        raise NotImplementedError
