from .accounts import AccountDirectory, DirectoryError

__all__ = ["AccountDirectory", "DirectoryError"]
