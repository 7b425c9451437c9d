"""
Core orchestration components.

Provides the credit ledger, progress tracking, preview generation, result
aggregation and the orchestrator that ties them together.
"""

from .aggregator import ResultAggregator
from .costs import CREDIT_PACKAGES, CostSchedule
from .ledger import CreditLedger
from .llm_factory import LLMFactory
from .orchestrator import Orchestrator
from .preview import PreviewGenerator
from .progress import ProgressTracker

__all__ = [
    "CREDIT_PACKAGES",
    "CostSchedule",
    "CreditLedger",
    "LLMFactory",
    "Orchestrator",
    "PreviewGenerator",
    "ProgressTracker",
    "ResultAggregator",
]
