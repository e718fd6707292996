"""Background maintenance jobs."""

from .gsc_maintenance import GSCMaintenanceScheduler

__all__ = ["GSCMaintenanceScheduler"]
