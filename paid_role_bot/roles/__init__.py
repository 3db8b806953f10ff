from .reconciler import GrantOutcome, RevokeOutcome, RoleReconciler

__all__ = ["GrantOutcome", "RevokeOutcome", "RoleReconciler"]
