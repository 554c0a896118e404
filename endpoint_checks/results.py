from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, replace
from typing import Iterable, Mapping


LOGGER = logging.getLogger("endpoint-monitor")


class TriState(enum.Enum):
    TRUE = "true"
    FALSE = "false"
    NOT_APPLICABLE = "n/a"

    @classmethod
    def from_optional_bool(cls, value: bool | None) -> TriState:
        if value is None:
            return cls.NOT_APPLICABLE
        return cls.TRUE if value else cls.FALSE

    def to_optional_bool(self) -> bool | None:
        if self is TriState.NOT_APPLICABLE:
            return None
        return self is TriState.TRUE


@dataclass(frozen=True)
class TargetConfig:
    id: str
    url: str
    expected_status_code: int | None = None
    expected_content: str | None = None
    is_reference: bool = False


@dataclass(frozen=True)
class ProbeOutcome:
    status_code: int
    body: str
    error_message: str | None = None


@dataclass(frozen=True)
class CheckResult:
    timestamp_utc: int
    target_id: str
    status_code_ok: TriState
    content_ok: TriState
    error_message: str | None
    succeeded: bool
    skip: bool = False
    id: int | None = None


def compute_succeeded(status_code_ok: TriState, content_ok: TriState, error_message: str | None) -> bool:
    return status_code_ok is not TriState.FALSE and content_ok is not TriState.FALSE and error_message is None


def evaluate_outcome(target: TargetConfig, outcome: ProbeOutcome, *, timestamp: int) -> CheckResult:
    """
    Map a raw probe outcome onto an unpersisted CheckResult.
    Rules that the target does not declare evaluate to NOT_APPLICABLE.
    """
    if target.expected_status_code is not None:
        status_code_ok = TriState.from_optional_bool(outcome.status_code == target.expected_status_code)
    else:
        status_code_ok = TriState.NOT_APPLICABLE

    if target.expected_content is not None:
        content_ok = TriState.from_optional_bool(target.expected_content in (outcome.body or ""))
    else:
        content_ok = TriState.NOT_APPLICABLE

    return CheckResult(
        timestamp_utc=int(timestamp),
        target_id=target.id,
        status_code_ok=status_code_ok,
        content_ok=content_ok,
        error_message=outcome.error_message,
        succeeded=compute_succeeded(status_code_ok, content_ok, outcome.error_message),
    )


def reference_success_ratio(results: Iterable[CheckResult], targets_by_id: Mapping[str, TargetConfig]) -> float:
    """
    Fraction of reference results in the batch that succeeded.

    With no reference results the ratio is 1.0, so nothing gets skipped.
    """
    reference_total = 0
    reference_succeeded = 0
    for result in results:
        target = targets_by_id.get(result.target_id)
        if target is None or not target.is_reference:
            continue
        reference_total += 1
        if result.succeeded:
            reference_succeeded += 1

    if reference_total == 0:
        LOGGER.debug("No reference results in batch; reference ratio defaults to 1.0")
        return 1.0
    return reference_succeeded / float(reference_total)


def apply_reference_gate(
    results: list[CheckResult],
    targets_by_id: Mapping[str, TargetConfig],
    *,
    threshold: float,
) -> list[CheckResult]:
    ratio = reference_success_ratio(results, targets_by_id)
    skip = ratio < float(threshold)
    if skip:
        LOGGER.warning(
            "Reference checks below threshold ratio=%s threshold=%s; non-reference results marked skip",
            round(ratio, 3),
            threshold,
        )

    gated: list[CheckResult] = []
    for result in results:
        target = targets_by_id.get(result.target_id)
        if target is not None and target.is_reference:
            gated.append(replace(result, skip=False))
        else:
            gated.append(replace(result, skip=skip))
    return gated
