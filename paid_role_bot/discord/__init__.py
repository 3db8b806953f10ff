from .client import PaymentRoleBot

__all__ = ["PaymentRoleBot"]
