from .client import KeyServerApi, KeyServerClient

__all__ = ["KeyServerApi", "KeyServerClient"]
