"""Pydantic schemas for request/response validation."""

from .availability import *  # noqa: F403
from .bus import *  # noqa: F403
from .common import *  # noqa: F403
from .health import *  # noqa: F403
from .hold import *  # noqa: F403
from .overbooking import *  # noqa: F403
from .parcel import *  # noqa: F403
from .route import *  # noqa: F403
from .ticket import *  # noqa: F403
from .trip import *  # noqa: F403
