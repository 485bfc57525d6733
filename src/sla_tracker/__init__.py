"""
SLA Tracker
===========

Support-ticket SLA compliance tracking service.
"""

__version__ = "1.0.0"
