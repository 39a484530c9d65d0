from .account_dal import AccountDAL
from .code_store import CodeRepository, MongoCodeStore
from .code_mirror import VolatileCodeMirror
from .security_log_dal import SecurityLogDAL

__all__ = ["AccountDAL", "CodeRepository", "MongoCodeStore", "VolatileCodeMirror", "SecurityLogDAL"]
