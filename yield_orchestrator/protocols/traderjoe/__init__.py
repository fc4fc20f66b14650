from .adapter import TraderJoeAdapter

__all__ = ["TraderJoeAdapter"]
