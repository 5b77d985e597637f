# All types a user would care about are made available in the top level package.

from .exceptions import *  # noqa: F403 public API
from .resources import *  # noqa: F403 public API
from .cache import *  # noqa: F403 public API
from .source import *  # noqa: F403 public API
from .controller import *  # noqa: F403 public API
from .client import *  # noqa: F403 public API
from .config import *  # noqa: F403 public API
from .models import *  # noqa: F403 public API
from .manager import Manager
from . import operator  # noqa: F401
