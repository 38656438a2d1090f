#Filename: findings.py
"""
In-memory findings sink.
Appends findings per target URL. Only passive header/TLS findings are
deduplicated, by (type, url); active-scan findings are always kept.
"""

import json
import logging
import time
from collections import defaultdict
from typing import Dict, List, Any

from structures import Finding

logger = logging.getLogger(__name__)


class FindingStore:
    """Sink contract: add(finding) appends at most once per call."""

    def __init__(self) -> None:
        self._findings: Dict[str, List[Finding]] = defaultdict(list)

    def add(self, finding: Finding) -> bool:
        """Returns False when a passive duplicate was dropped."""
        bucket = self._findings[finding.url]
        if finding.type.is_passive:
            if any(f.type is finding.type for f in bucket):
                return False
        bucket.append(finding)
        logger.info("[Finding] %s [%s] %s", finding.type.value, finding.severity.value, finding.url)
        return True

    def for_url(self, url: str) -> List[Finding]:
        return list(self._findings.get(url, ()))

    def all(self) -> List[Finding]:
        return [f for bucket in self._findings.values() for f in bucket]

    def clear(self, url: str = None) -> None:
        if url is None:
            self._findings.clear()
        else:
            self._findings.pop(url, None)

    def __len__(self) -> int:
        return sum(len(b) for b in self._findings.values())

    def to_dict(self) -> Dict[str, List[Dict[str, Any]]]:
        return {url: [f.to_dict() for f in bucket] for url, bucket in self._findings.items()}

    def export_json(self, path: str = None) -> str:
        """Writes the report and returns the path used."""
        if path is None:
            path = f"webrace_suite_report_{int(time.time() * 1000)}.json"
        try:
            with open(path, "w", encoding="utf-8") as fh:
                json.dump(self.to_dict(), fh, indent=2)
        except OSError as e:
            logger.error("Failed to export findings to %s: %s", path, e)
            raise
        return path
