"""
Structured diagnostics for non-fatal conditions.

Every recoverable condition (renormalised weights, failed replications,
calibration fallback, short validation windows) is recorded here as a
Diagnostic with a kind, a message and a context dictionary, and logged at
WARNING level. Nothing is defaulted silently.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class DiagnosticKind(Enum):
    """Kinds of non-fatal conditions reported by the engine."""
    WEIGHTS_RENORMALIZED = "weights_renormalized"
    SCENARIO_FAILED = "scenario_failed"
    SCENARIO_TIMEOUT = "scenario_timeout"
    INSUFFICIENT_DATA = "insufficient_data"
    FEW_VALIDATION_POINTS = "few_validation_points"
    MAPE_ZERO_EXCLUDED = "mape_zero_excluded"
    FLEET_SIZE_CAPPED = "fleet_size_capped"


@dataclass(frozen=True)
class Diagnostic:
    """
    A single non-fatal condition.

    Attributes:
        kind: Category of the condition
        message: Human-readable description
        context: Structured values relevant to the condition
    """
    kind: DiagnosticKind
    message: str
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        """Convert to dictionary for export."""
        return {
            'kind': self.kind.value,
            'message': self.message,
            'context': dict(self.context),
        }

    def __repr__(self) -> str:
        return f"Diagnostic({self.kind.value}: {self.message})"


class DiagnosticsLog:
    """
    Collects diagnostics raised during configuration, simulation,
    calibration and validation.

    Attributes:
        entries: Recorded diagnostics in the order they were reported
    """

    def __init__(self, entries: Optional[List[Diagnostic]] = None):
        self.entries: List[Diagnostic] = list(entries or [])

    def report(
        self,
        kind: DiagnosticKind,
        message: str,
        **context: Any
    ) -> Diagnostic:
        """Record a diagnostic and log it as a warning."""
        diagnostic = Diagnostic(kind=kind, message=message, context=context)
        self.entries.append(diagnostic)
        logger.warning(f"[{kind.value}] {message}")
        return diagnostic

    def extend(self, diagnostics: List[Diagnostic]) -> None:
        """Append already-built diagnostics without logging them again."""
        self.entries.extend(diagnostics)

    def of_kind(self, kind: DiagnosticKind) -> List[Diagnostic]:
        return [d for d in self.entries if d.kind is kind]

    def count(self, kind: Optional[DiagnosticKind] = None) -> int:
        if kind is None:
            return len(self.entries)
        return len(self.of_kind(kind))

    def to_list(self) -> List[Dict]:
        return [d.to_dict() for d in self.entries]

    def export_to_json(self, filepath: str) -> None:
        """
        Export all diagnostics to a JSON file.

        Args:
            filepath: Path to output JSON file
        """
        with open(filepath, 'w') as f:
            json.dump(self.to_list(), f, indent=2, default=str)
        logger.info(f"Exported {len(self.entries)} diagnostics to {filepath}")

    def clear(self) -> None:
        self.entries.clear()

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    def __repr__(self) -> str:
        return f"DiagnosticsLog(entries={len(self.entries)})"
