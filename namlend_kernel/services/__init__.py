"""Kernel services (imperative shell over the ORM)."""

from namlend_kernel.services.auditor_service import AuditorService, AuditTrace

__all__ = ["AuditorService", "AuditTrace"]
