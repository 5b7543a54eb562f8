import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence, Tuple

from mirror import MirrorOutcome, MirrorRecord

logger = logging.getLogger(__name__)


@dataclass
class RunReport:
    """
    Aggregate result of a mirror run. Only the scheduling thread writes it.
    """
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    results: List[Tuple[MirrorRecord, MirrorOutcome]] = field(default_factory=list)

    def record(self, outcome: MirrorOutcome):
        if outcome is MirrorOutcome.SUCCEEDED:
            self.succeeded += 1
        elif outcome is MirrorOutcome.SKIPPED_DRY_RUN:
            self.skipped += 1
        else:
            self.failed += 1

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0

    def failed_records(self) -> List[MirrorRecord]:
        return [r for r, outcome in self.results if outcome is MirrorOutcome.FAILED]

    def summary(self) -> str:
        text = f"Mirror complete: {self.succeeded} succeeded, {self.failed} failed"
        if self.skipped:
            text += f", {self.skipped} skipped (dry run)"
        return text


def unique_by_original(records: Iterable[MirrorRecord]) -> List[MirrorRecord]:
    """
    Keep the first record for each distinct source image, preserving order.
    """
    seen = set()
    unique: List[MirrorRecord] = []
    for record in records:
        if record.original not in seen:
            seen.add(record.original)
            unique.append(record)
    return unique


def run(records: Sequence[MirrorRecord], max_parallel: int, executor, dry_run: bool = False) -> RunReport:
    """
    Mirror every record with at most `max_parallel` copies in flight.

    Outcomes are collected on the calling thread as tasks complete; results in
    the report keep the input order of `records`.
    """
    if max_parallel < 1:
        raise ValueError(f"max_parallel must be at least 1, got {max_parallel}")

    report = RunReport()
    if not records:
        logger.info("No images to mirror")
        return report

    logger.info(f"Mirroring {len(records)} images with {max_parallel} parallel jobs")
    outcomes: Dict[int, MirrorOutcome] = {}
    with ThreadPoolExecutor(max_workers=max_parallel) as pool:
        future_to_index = {
            pool.submit(executor.execute, record.original, record.mirror, dry_run): idx
            for idx, record in enumerate(records)
        }
        for future in as_completed(future_to_index):
            idx = future_to_index[future]
            try:
                outcome = future.result()
            except Exception as e:
                logger.error(f"Unexpected error mirroring {records[idx].original}: {e}")
                outcome = MirrorOutcome.FAILED
            outcomes[idx] = outcome
            report.record(outcome)

    report.results = [(record, outcomes[idx]) for idx, record in enumerate(records)]
    logger.info(report.summary())
    return report
