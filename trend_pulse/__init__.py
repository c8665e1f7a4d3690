"""
Trend Pulse - trend detection and velocity/anomaly scoring engine.

Consumes annotated mention events, maintains rolling window statistics and
baselines, clusters near-duplicate topic labels, scores and ranks trends,
tracks their lifecycle and produces per-organization relevance scores and
anomaly alerts.
"""

__version__ = "1.0.0"
