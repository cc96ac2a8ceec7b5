from .account import Account
from .db import Base

__all__ = ["Account", "Base"]
