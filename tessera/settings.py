"""
Process-wide ORM settings.

Read at call time, so changing them (directly or through
``tessera.config.OrmConfig.apply``) affects subsequent queries.
"""

from __future__ import annotations

import datetime
import logging
from typing import Any, Callable, Dict, Optional

# Log every statement through the query log decorator
DEBUG: bool = False

# -1 means no limit
DEFAULT_ROWS_LIMIT: int = -1

# Relation depth used by ``related_sel()`` without arguments
DEFAULT_RELS_DEPTH: int = 2

# Time zone datetimes read from the database are converted to
DEFAULT_TIME_LOC: datetime.tzinfo = datetime.timezone.utc

# Logger used by the query log decorator
DEBUG_LOG: logging.Logger = logging.getLogger("tessera.orm")

# Optional hook receiving a dict per logged statement
LOG_FUNC: Optional[Callable[[Dict[str, Any]], None]] = None
