from dataclasses import dataclass
from typing import List

from agent_gateway.config import ContainerLimits, GatewayConfig

REQUIRED_CAPABILITIES = ("NET_ADMIN", "SYS_ADMIN")
OPTIONAL_CAPABILITIES = ("NET_RAW", "SYS_TIME", "DAC_OVERRIDE", "AUDIT_WRITE")


@dataclass(frozen=True)
class IsolationDecision:
    privileged: bool
    capabilities: tuple
    limits: ContainerLimits


class ContainerSecurityPolicy:
    """Turns deployment configuration into docker isolation flags.

    Nothing here is driven by request parameters: privilege and resource
    limits are fixed per deployment. Unprivileged containers start from an
    empty capability set and get back only the declared capabilities.
    """

    def __init__(self, config: GatewayConfig) -> None:
        self._privileged = bool(config.privileged)
        self._optional = dict(config.optional_capabilities or {})
        self._limits = config.limits

    def evaluate(self) -> IsolationDecision:
        if self._privileged:
            return IsolationDecision(privileged=True, capabilities=(), limits=self._limits)
        enabled = tuple(cap for cap in OPTIONAL_CAPABILITIES if self._optional.get(cap))
        return IsolationDecision(
            privileged=False,
            capabilities=REQUIRED_CAPABILITIES + enabled,
            limits=self._limits,
        )

    def docker_flags(self) -> List[str]:
        decision = self.evaluate()
        if decision.privileged:
            return ["--privileged"]
        flags: List[str] = ["--cap-drop", "ALL"]
        for cap in decision.capabilities:
            flags.extend(["--cap-add", cap])
        flags.extend(
            [
                "--memory",
                decision.limits.memory,
                "--cpu-shares",
                decision.limits.cpu_shares,
                "--pids-limit",
                decision.limits.pids_limit,
            ]
        )
        return flags
