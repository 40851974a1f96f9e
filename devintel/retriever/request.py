"""
Request Context

Per-request inputs shared by every pipeline stage: which app is asking,
who the user is, and the request options (chunker, audit restriction,
page size).
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class UserProfile:
    """The signed-in user, as far as the platform told us."""
    user_id: Optional[str] = None
    email: Optional[str] = None
    token: Optional[str] = None
    my_course_ids: Tuple[str, ...] = ()
    video_access_course_ids: Tuple[str, ...] = ()

    @classmethod
    def from_platform(
        cls,
        user: Dict[str, Any],
        email: Optional[str] = None,
        token: Optional[str] = None,
    ) -> "UserProfile":
        """Profile from a platform user record; the request e-mail and token are kept."""
        return cls(
            user_id=str(user["_id"]) if user.get("_id") else None,
            email=user.get("email") or email,
            token=token,
            my_course_ids=tuple(str(c) for c in user.get("myCourseIds") or []),
            video_access_course_ids=tuple(str(c) for c in user.get("videoAccessCourseIds") or []),
        )


@dataclass(frozen=True)
class RequestContext:
    app: str = "entwickler"
    platform: str = "rag"
    user: UserProfile = field(default_factory=UserProfile)
    chunker: Optional[str] = None
    use_audited_only: bool = False
    page_size: Optional[int] = None
    content_types: Tuple[str, ...] = ()
    attendee_filters: bool = False

    @property
    def token(self) -> Optional[str]:
        return self.user.token

    def with_user(self, user: Optional[UserProfile]) -> "RequestContext":
        if user is None:
            return self
        return replace(self, user=user)
