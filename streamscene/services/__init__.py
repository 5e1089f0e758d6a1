from . import posts, tokens

__all__ = ["posts", "tokens"]
