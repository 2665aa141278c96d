"""
Adapter turning an async callable into an :class:`Agent`.

Bootstrap code wraps each external provider call (AI text generation,
transcription, speech synthesis, ...) in a :class:`CallableAgent` and
registers exactly one canonical provider per capability.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from multiagent_orchestrator.agent import BaseAgent
from multiagent_orchestrator.context import ExecutionContext
from multiagent_orchestrator.models.agents import AgentMetadata
from multiagent_orchestrator.models.requests import BaseRequest, BaseResponse


@dataclass
class CallResult:
    """Output of a provider call together with the usage it incurred."""

    data: Any
    tokens_used: int = 0
    cost: float = 0.0


Handler = Callable[[BaseRequest, ExecutionContext], Awaitable[Any]]
Probe = Callable[[], Awaitable[bool]]


class CallableAgent(BaseAgent):
    """Agent backed by an async handler function.

    The handler may return a :class:`BaseResponse` (used as is), a
    :class:`CallResult` (data plus usage), or any other value which becomes
    the response data. It signals failures by raising the execution errors
    from :mod:`multiagent_orchestrator.agent`.

    Args:
        metadata: The agent's metadata.
        handler: ``async (request, context) -> result``.
        probe: Optional ``async () -> bool`` health probe.
    """

    def __init__(
        self,
        metadata: AgentMetadata,
        handler: Handler,
        probe: Probe | None = None,
    ) -> None:
        super().__init__(metadata)
        self._handler = handler
        self._probe_fn = probe

    async def _probe(self) -> bool:
        if self._probe_fn is None:
            return True
        return await self._probe_fn()

    async def process(self, request: BaseRequest, context: ExecutionContext) -> BaseResponse:
        self.check_constraints(context)
        result = await self._handler(request, context)
        if isinstance(result, BaseResponse):
            return result
        if isinstance(result, CallResult):
            return self.create_response(
                request, result.data, tokens_used=result.tokens_used, cost=result.cost
            )
        return self.create_response(request, result)
