"""
M365 License Engine
===================
Service-plan / product lookups over the Microsoft licensing catalog, and
read-only classification of tenant license assignments.

WARNING: This tool operates in STRICT READ-ONLY mode against the tenant.
"""

__version__ = "1.0.0"
__author__ = "M365 License Engine"
__mode__ = "READ-ONLY"
