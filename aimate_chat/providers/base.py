from abc import ABC, abstractmethod
from typing import AsyncIterator, List

from aimate_chat.agent.structs import CompletionRequest


class BaseProvider(ABC):
    """
    The Abstract Base Class (Contract) for model inference endpoints.
    """

    @abstractmethod
    def stream_chat(self, request: CompletionRequest) -> AsyncIterator[str]:
        """
        Stream content deltas for one completion request.

        Yields:
            str: Non-empty content fragments, in arrival order.

        Raises:
            ProviderError: Classified transport/HTTP failures.
        """
        pass

    @abstractmethod
    async def list_models(self) -> List[str]:
        """
        Model ids the endpoint advertises.
        """
        pass

    @abstractmethod
    async def validate_connection(self) -> bool:
        """
        Ping the provider to ensure availability/authentication.
        """
        pass

    async def close(self) -> None:
        """Release network resources. Default: nothing to release."""
        return None
