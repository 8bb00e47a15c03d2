"""
Depthcaster – SQLAlchemy ORM models package.

Imports all model classes so the app can create every table
through a single ``from depthcaster.models import *`` import.
"""

from depthcaster.models.user import User, UserRole                   # noqa: F401
from depthcaster.models.curated_cast import (                         # noqa: F401
    CastTag,
    CuratedCast,
    CuratedCastInteraction,
    CuratorCastCuration,
    PARENT_CAST_PLACEHOLDER_HASH,
)
from depthcaster.models.cast_reply import CastReply                   # noqa: F401
from depthcaster.models.poll import Poll, PollOption, PollResponse    # noqa: F401
from depthcaster.models.watch import UserWatch                        # noqa: F401
from depthcaster.models.notification import UserNotification          # noqa: F401
from depthcaster.models.webhook import Webhook                        # noqa: F401
