"""
Cognitive Profiler: concurrent multi-provider text analysis with per-provider
credit metering.
"""

__version__ = "0.1.0"
