"""
clonecheck.

Validation and error-classification engine for AI-generated business
cloneability analyses: repairs untrusted provider payloads, attaches source
attribution, and maps every failure onto a stable error taxonomy.
"""

__version__ = "1.0.0"
__author__ = "clonecheck maintainers"

# Lazy imports to avoid circular dependencies
def get_pipeline():
    """Get the AnalysisPipeline class (lazy import)."""
    from clonecheck.pipeline.orchestrator import AnalysisPipeline
    return AnalysisPipeline

__all__ = ["get_pipeline", "__version__"]
