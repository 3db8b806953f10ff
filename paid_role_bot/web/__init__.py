from .gateway import create_webhook_app

__all__ = ["create_webhook_app"]
