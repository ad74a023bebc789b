"""Best-effort side effects that run after a record is committed.

Each step runs in its own try/except. A failing step is logged with enough
context to redo it by hand and the remaining steps still run. Nothing is
rolled back.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from fulfillment.utils.logging import get_logger, log_side_effect

logger = get_logger(__name__)


@dataclass(frozen=True)
class SideEffect:
    """A named step; fn takes no arguments and its return value is kept."""

    name: str
    fn: Callable[[], Any]


@dataclass(frozen=True)
class SideEffectContext:
    natural_key: str | None
    reference: str | None
    payment_type: str | None = None


@dataclass
class SideEffectReport:
    """What happened to each step."""

    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    results: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    def merge(self, other: "SideEffectReport") -> None:
        self.succeeded.extend(other.succeeded)
        self.failed.update(other.failed)
        self.results.update(other.results)


class SideEffectRunner:
    """Runs side effects in order, isolating failures."""

    def run(self, steps: Iterable[SideEffect], context: SideEffectContext) -> SideEffectReport:
        report = SideEffectReport()
        for step in steps:
            try:
                report.results[step.name] = step.fn()
            except Exception as e:
                report.failed[step.name] = repr(e)
                log_side_effect(
                    logger,
                    step.name,
                    natural_key=context.natural_key,
                    reference=context.reference,
                    payment_type=context.payment_type,
                    error=e,
                )
                continue
            report.succeeded.append(step.name)
            log_side_effect(
                logger,
                step.name,
                natural_key=context.natural_key,
                reference=context.reference,
                payment_type=context.payment_type,
            )
        return report
