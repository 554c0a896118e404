from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator

from endpoint_checks.results import CheckResult, TriState


MESSAGE_UNEXPECTED_STATUS_CODE = "unexpected status code"
MESSAGE_UNEXPECTED_CONTENT = "unexpected content"
MESSAGE_OK = "OK"
MESSAGE_UNKNOWN_ERROR = "unknown error"


@dataclass(frozen=True)
class TimelineSegment:
    begin: int
    end: int
    succeeded: bool
    message: str


def segment_message(result: CheckResult) -> str:
    if result.error_message is not None:
        return result.error_message
    if result.status_code_ok is TriState.FALSE:
        return MESSAGE_UNEXPECTED_STATUS_CODE
    if result.content_ok is TriState.FALSE:
        return MESSAGE_UNEXPECTED_CONTENT
    if result.succeeded:
        return MESSAGE_OK
    return MESSAGE_UNKNOWN_ERROR


class Timeline:
    """
    Display segments for one target's history.

    Each non-skipped result covers the span back to the previous result, but
    never further back than retrograde_validity. Iterating again restarts from
    the first segment.
    """

    def __init__(self, results: Iterable[CheckResult], *, cycle_interval: int, retrograde_validity: int) -> None:
        self._results = sorted((r for r in results if not r.skip), key=lambda r: r.timestamp_utc)
        self.cycle_interval = int(cycle_interval)
        self.retrograde_validity = int(retrograde_validity)

    def __iter__(self) -> Iterator[TimelineSegment]:
        previous_ts: int | None = None
        for result in self._results:
            ts = int(result.timestamp_utc)
            left = previous_ts if previous_ts is not None else ts - self.cycle_interval
            begin = max(left, ts - self.retrograde_validity)
            previous_ts = ts
            yield TimelineSegment(begin=begin, end=ts, succeeded=bool(result.succeeded), message=segment_message(result))

    def __len__(self) -> int:
        return len(self._results)


def build_timeline(results: Iterable[CheckResult], *, cycle_interval: int, retrograde_validity: int) -> Timeline:
    return Timeline(results, cycle_interval=cycle_interval, retrograde_validity=retrograde_validity)
