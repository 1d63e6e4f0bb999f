"""Audit module for tenant activity

This module handles:
- Persisted audit log entries (AuditLog rows) and their queries
- Short-lived tenant access, admin and cross-tenant events kept in Redis
- Per-tenant usage metrics derived from those events
"""
