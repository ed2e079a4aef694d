# PATH: core/models.py
"""
Core data models for rpcpoll.

Endpoint -> Attempt(Outcome) -> RunSummary -> CampaignSummary.

Outcomes are values, not exceptions: a failed RPC call becomes a Failure
recorded at its attempt index and the run carries on.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from core.constants import ErrorCode


@dataclass(frozen=True)
class Endpoint:
    """Connection descriptor for one chain on the gateway."""
    chain_id: str
    url: str
    credential: Optional[str] = None

    @property
    def redacted_url(self) -> str:
        """URL safe to print (credential masked)."""
        if not self.credential:
            return self.url
        # the resolver appends the credential as the last path segment
        if self.url.endswith("/" + self.credential):
            return self.url[: -len(self.credential)] + "***"
        return self.url.replace(self.credential, "***")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chain_id": self.chain_id,
            "url": self.redacted_url,
            "has_credential": self.credential is not None,
        }


@dataclass(frozen=True)
class Success:
    """Attempt returned a block number."""
    block_number: int

    ok = True


@dataclass(frozen=True)
class Failure:
    """Attempt raised; reason is the rendered error."""
    reason: str
    error_code: ErrorCode = ErrorCode.UNKNOWN

    ok = False


Outcome = Union[Success, Failure]


@dataclass(frozen=True)
class Attempt:
    """One request cycle within a run."""
    index: int
    endpoint: Endpoint
    outcome: Outcome
    latency_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.outcome.ok

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "index": self.index,
            "chain_id": self.endpoint.chain_id,
            "ok": self.ok,
            "latency_ms": self.latency_ms,
        }
        if isinstance(self.outcome, Success):
            data["block_number"] = self.outcome.block_number
        else:
            data["error_code"] = self.outcome.error_code.value
            data["reason"] = self.outcome.reason
        return data


@dataclass
class RunSummary:
    """Tally of one run (one chain, one repetition)."""
    chain_id: str
    repetition: int = 0
    attempts: int = 0
    successes: int = 0
    failures: int = 0
    skipped: bool = False
    skip_reason: Optional[str] = None

    def record(self, attempt: Attempt) -> None:
        self.attempts += 1
        if attempt.ok:
            self.successes += 1
        else:
            self.failures += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chain_id": self.chain_id,
            "repetition": self.repetition,
            "attempts": self.attempts,
            "successes": self.successes,
            "failures": self.failures,
            "skipped": self.skipped,
            "skip_reason": self.skip_reason,
        }


@dataclass
class CampaignSummary:
    """All runs of a campaign."""
    runs: List[RunSummary] = field(default_factory=list)

    @property
    def total_attempts(self) -> int:
        return sum(r.attempts for r in self.runs)

    @property
    def total_successes(self) -> int:
        return sum(r.successes for r in self.runs)

    @property
    def total_failures(self) -> int:
        return sum(r.failures for r in self.runs)

    @property
    def skipped_runs(self) -> int:
        return sum(1 for r in self.runs if r.skipped)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "runs": len(self.runs),
            "skipped_runs": self.skipped_runs,
            "attempts": self.total_attempts,
            "successes": self.total_successes,
            "failures": self.total_failures,
        }
