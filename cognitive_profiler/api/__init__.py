"""HTTP API for the Cognitive Profiler service."""
