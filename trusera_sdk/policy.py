from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from trusera_sdk.enums import Decision
from trusera_sdk.errors import PolicyServiceError
from trusera_sdk.logging import get_logger
from trusera_sdk.transport import RequestDescriptor, Transport

logger = get_logger("policy")

DEFAULT_DENY_REASON = "denied by policy"


class PolicyDecision(BaseModel):
    model_config = ConfigDict(extra="ignore")

    decision: Decision
    reasons: list[str] = Field(default_factory=list)

    @property
    def denied(self) -> bool:
        return self.decision is Decision.DENY

    @property
    def first_reason(self) -> str:
        return self.reasons[0] if self.reasons else DEFAULT_DENY_REASON


class PolicyEvaluator:
    """Asks a remote decision endpoint whether a request may proceed.

    Calls go through the transport given at construction, which for the
    interceptor is the transport it replaced, so policy traffic is never
    intercepted itself.
    """

    def __init__(self, policy_url: str, transport: Transport) -> None:
        self.policy_url = policy_url
        self._transport = transport

    async def evaluate(self, descriptor: RequestDescriptor) -> PolicyDecision:
        response = await self._transport(
            self.policy_url,
            method="POST",
            headers={"Content-Type": "application/json"},
            content=descriptor.model_dump_json(),
        )
        if not response.is_success:
            raise PolicyServiceError(f"policy service returned {response.status_code}: {response.text}")
        try:
            decision = PolicyDecision.model_validate(response.json())
        except ValueError as exc:
            raise PolicyServiceError(f"unreadable policy decision: {exc}") from exc
        logger.debug(
            "policy decision",
            extra={"decision": decision.decision.value, "url": descriptor.url, "reasons": decision.reasons},
        )
        return decision
