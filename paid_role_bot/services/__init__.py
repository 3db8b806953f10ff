from .alerts import AlertClient

__all__ = ["AlertClient"]
