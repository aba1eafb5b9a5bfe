from __future__ import annotations

from dataclasses import dataclass

from app.models.assessment import Assessment
from app.models.attempt import Attempt


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated identity extracted from a validated JWT.

    Resolved once per request by the API layer and handed to every
    service call.  Services ask it capability questions (is this the
    attempt's participant? the assessment's owning admin?) instead of
    inspecting role strings themselves.

        user_id: subject from JWT
        roles: platform roles (admin, user)
    """

    user_id: str
    roles: frozenset[str]

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def is_admin(self) -> bool:
        return "admin" in self.roles

    def is_participant_of(self, attempt: Attempt) -> bool:
        return attempt.participant_id == self.user_id

    def is_owner_of(self, assessment: Assessment) -> bool:
        return self.is_admin() and assessment.admin_id == self.user_id
