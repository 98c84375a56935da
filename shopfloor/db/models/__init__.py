from .production import *  # noqa
from .weighing import *  # noqa
from .security_audit import *  # noqa
