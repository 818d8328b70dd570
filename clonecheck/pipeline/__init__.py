"""Pipeline module for clonecheck."""

from clonecheck.pipeline.orchestrator import (
    AnalysisPipeline,
    AnalysisProvider,
    AnalysisStateDict,
    AnalysisStatus,
    analyze_url,
)

__all__ = [
    "AnalysisPipeline",
    "AnalysisProvider",
    "AnalysisStateDict",
    "AnalysisStatus",
    "analyze_url",
]
