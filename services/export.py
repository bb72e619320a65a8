"""
Boost Report Export

CSV snapshot of the boosts and multipliers of every attached subject.
"""

import csv
import logging
from pathlib import Path
from typing import Iterable, Optional

from engine.accumulator import BoostAccumulator

logger = logging.getLogger(__name__)


class BoostReportExporter:
    """
    Writes one row per active boost, followed by a multiplier summary
    per subject and resource kind.
    """

    BOOST_HEADER = ["Subject", "Resource", "Boost", "Magnitude", "Expires At", "Seconds Left"]
    SUMMARY_HEADER = ["Subject", "Resource", "Boosts", "Peer Bonus", "Rebirth Bonus", "Multiplier"]

    def __init__(self, accumulator: BoostAccumulator, now_fn=None):
        self._accumulator = accumulator
        self._now_fn = now_fn

    def export_csv(self, subjects: Iterable, filepath: Path,
                   resource_kinds: Optional[Iterable[str]] = None) -> bool:
        """
        Export the boost report.

        Args:
            subjects: Subject ids to include
            filepath: Output file path
            resource_kinds: Kinds to summarize in addition to those with boosts

        Returns:
            True if export successful, False otherwise
        """
        subjects = list(subjects)
        extra_kinds = list(resource_kinds or [])
        now = self._now_fn() if self._now_fn else None

        try:
            with open(filepath, 'w', newline='', encoding='utf-8') as f:
                writer = csv.writer(f)

                writer.writerow(["Active Boosts"])
                writer.writerow(self.BOOST_HEADER)
                kinds_by_subject = {}
                for subject_id in subjects:
                    boosts = self._accumulator.active_boosts(subject_id)
                    kinds = kinds_by_subject.setdefault(subject_id, list(extra_kinds))
                    for record in sorted(boosts, key=lambda r: (r.resource_kind, r.id)):
                        if record.resource_kind not in kinds:
                            kinds.append(record.resource_kind)
                        seconds_left = record.remaining_seconds(now) if now else None
                        writer.writerow([
                            subject_id,
                            record.resource_kind,
                            record.id,
                            f"{record.magnitude:g}",
                            record.expires_at.isoformat() if record.expires_at else "permanent",
                            f"{seconds_left:.0f}" if seconds_left is not None else "",
                        ])
                writer.writerow([])

                writer.writerow(["Multipliers"])
                writer.writerow(self.SUMMARY_HEADER)
                for subject_id in subjects:
                    for kind in kinds_by_subject.get(subject_id, []):
                        breakdown = self._accumulator.explain_multiplier(subject_id, kind)
                        writer.writerow([
                            subject_id,
                            kind,
                            f"{breakdown.boosts:g}",
                            f"{breakdown.peer_bonus:g}",
                            f"{breakdown.rebirth_bonus:g}",
                            f"{breakdown.total:g}",
                        ])

            return True

        except OSError as e:
            logger.error("CSV export error: %s", e)
            return False
