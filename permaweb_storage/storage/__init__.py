from .cache import ContentCache

__all__ = ["ContentCache"]
