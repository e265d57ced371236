"""
Core components for the audit engine.

Contains:
- Base class for check units
- Data models (CheckOutcome, CheckError, AuditReport, etc.)
- Error taxonomy
"""
