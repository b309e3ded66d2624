"""
Actor identity passed from the request layer into services.

The service layer never reads Flask's ``g`` directly; blueprints hand it an
``Actor`` resolved by ``toolroom.middleware.identity_context``.
"""

from typing import NamedTuple, Optional


class Actor(NamedTuple):
    org_id: Optional[str] = None
    user_id: Optional[str] = None

    @property
    def is_anonymous(self) -> bool:
        return not self.user_id


ANONYMOUS = Actor()
