from .adapter import YieldYakAdapter

__all__ = ["YieldYakAdapter"]
