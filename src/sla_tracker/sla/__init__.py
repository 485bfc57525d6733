"""
SLA Tracking Module
===================

Bounded Context for support-ticket Service Level Agreement compliance.

Responsibilities:
- Snapshot per-priority SLA targets from the team policy onto new tickets
- Record first response / resolution once and flag breaches
- Aggregate compliance, MTTR and daily trends
- Detect tickets approaching breach (80% of a target elapsed)
- Sweep all teams periodically and notify on at-risk tickets
- Provide the HTTP API for tickets, policies and metrics
"""

__version__ = "1.0.0"
