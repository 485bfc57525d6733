"""
Shared Kernel Module
====================

Generic infrastructure used by the SLA tracking module: structured
logging and HTTP middleware.

DO NOT add SLA business logic to the shared kernel.
"""
