from .account import Account, MinecraftRank
from .link_code import LinkCode

__all__ = ["Account", "MinecraftRank", "LinkCode"]
