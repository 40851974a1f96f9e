"""
User Context

Who is asking and what they are entitled to, reduced to the handful of
fields the answer prompt and the access messages need: platform,
membership tier, community experience or interest tags, add-on discount
and preferred answer language.

The RAG access record is fetched from the user service by e-mail. Every
lookup here is a soft dependency: failures are logged and the anonymous
default is used instead.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from ..common.content_store import ContentStore, get_brand_complex
from ..common.language import DEFAULT_LANGUAGE
from .request import UserProfile

logger = logging.getLogger("devintel.retriever.user_context")

PLATFORMS = {
    "ENTWICKLER": "entwickler.de",
    "DEVMIO": "devm.io",
    "DEVMIONL": "devmio.nl",
}

ENTWICKLER_PLATFORM = "entwickler.de"
DEVMIO_PLATFORM = "devm.io"

CATEGORY_APP = "devmio"

# Used when no user is signed in or the lookup failed
ANONYMOUS_ACCESS: Dict[str, Any] = {
    "selectedBrandComplexId": None,
    "selectedCategoryIds": [],
    "numberOfSeats": 0,
    "accessTier": None,
    "hasRagAccess": True,
}


class DiscountType(str, Enum):
    PERCENT = "percent"
    FIXED = "fixed"


# (minimum seats, discount), checked top to bottom
ELEVATE_DISCOUNTS = ((300, 25), (100, 20), (50, 15), (16, 10))
FULLSTACK_EXACT_DISCOUNTS = {1: 100, 3: 150, 5: 200}
FULLSTACK_TEAM_DISCOUNTS = ((15, 300), (10, 250))


def platform_for_app(app: Optional[str]) -> str:
    """entwickler -> entwickler.de, devmio -> devm.io, devmionl -> devmio.nl; else ''."""
    return PLATFORMS.get((app or "").upper(), "")


def discount_for(access_tier: Optional[str], seats: int) -> Tuple[Optional[int], Optional[DiscountType]]:
    """
    Add-on discount for a membership.

    Elevate pays a percentage by seat band; Fullstack gets a fixed amount
    for 1, 3 and 5 seats and for teams of 10 or more.

    Returns:
        (amount, type), or (None, None) when no discount applies
    """
    if access_tier == "elevate":
        for minimum, amount in ELEVATE_DISCOUNTS:
            if seats >= minimum:
                return amount, DiscountType.PERCENT
    elif access_tier == "fullstack":
        if seats in FULLSTACK_EXACT_DISCOUNTS:
            return FULLSTACK_EXACT_DISCOUNTS[seats], DiscountType.FIXED
        for minimum, amount in FULLSTACK_TEAM_DISCOUNTS:
            if seats >= minimum:
                return amount, DiscountType.FIXED
    return None, None


@dataclass(frozen=True)
class UserContext:
    """Personalization and entitlement data for one request"""
    platform: str = ""
    access_tier: Optional[str] = None
    community_experience: str = ""
    tags: str = ""
    add_on_discount_amount: Optional[int] = None
    add_on_discount_type: Optional[DiscountType] = None
    language_preference: str = DEFAULT_LANGUAGE

    @property
    def assistant_name(self) -> str:
        if self.platform == ENTWICKLER_PLATFORM:
            return "Entwickler Intelligence"
        return "Dev Intelligence"

    @property
    def currency(self) -> str:
        return "$" if self.platform == DEVMIO_PLATFORM else "€"

    def with_language(self, language: str) -> "UserContext":
        return replace(self, language_preference=language or DEFAULT_LANGUAGE)

    def to_header(self) -> Dict[str, Any]:
        """The User Context Header sent with the answer prompt."""
        return {
            "platform": self.platform,
            "accessTier": self.access_tier,
            "communityExperience": self.community_experience,
            "tags": self.tags,
            "addOnDiscountAmount": self.add_on_discount_amount if self.add_on_discount_amount is not None else "",
            "addOnDiscountType": self.add_on_discount_type.value if self.add_on_discount_type else "",
            "languagePreference": self.language_preference,
        }


@dataclass(frozen=True)
class UserLookup:
    """What the platform knows about the requesting user"""
    profile: Optional[UserProfile] = None
    access: Optional[Dict[str, Any]] = None


class UserContextResolver:
    """
    Builds a UserContext from the platform's RAG access record.

    Args:
        store: Content store holding the brand complexes
        platform: PlatformClient; without one every user is anonymous
    """

    def __init__(self, store: ContentStore, platform=None):
        self._store = store
        self._platform = platform

    async def lookup(self, user: Optional[UserProfile], question: str) -> UserLookup:
        """
        Platform user and RAG access record for the requesting user.

        Returns:
            UserLookup. The profile is None for anonymous users or when the user
            lookup fails; the access record is None whenever it could not be fetched.
        """
        email = user.email if user is not None else None
        if not email or self._platform is None:
            return UserLookup()
        try:
            found = await self._platform.find_user_by_email(email)
            if not found or not found.get("_id"):
                logger.info("No platform user for %s", email)
                return UserLookup()
        except Exception as e:
            logger.warning("User lookup failed for %s: %s", email, e)
            return UserLookup()

        profile = UserProfile.from_platform(found, email=email, token=user.token)
        try:
            access = await self._platform.rag_access(found["_id"], "NONE", question)
        except Exception as e:
            logger.warning("RAG access lookup failed for %s: %s", email, e)
            access = None
        return UserLookup(profile=profile, access=access)

    async def _tags(self, category_ids) -> str:
        if self._platform is None:
            return ""
        try:
            categories = await self._platform.get_categories(list(category_ids), CATEGORY_APP)
        except Exception as e:
            logger.warning("Category lookup failed: %s", e)
            return ""
        return ",".join(c.get("name") or "" for c in categories)

    async def build(
        self,
        access: Optional[Dict[str, Any]],
        app: Optional[str],
        language: str = DEFAULT_LANGUAGE,
    ) -> UserContext:
        access = access or ANONYMOUS_ACCESS
        community_experience = ""
        tags = ""

        brand_complex_id = access.get("selectedBrandComplexId")
        category_ids = access.get("selectedCategoryIds") or []
        if brand_complex_id:
            brand_complex = await get_brand_complex(self._store, brand_complex_id)
            community_experience = brand_complex.get("name") or ""
        elif category_ids:
            tags = await self._tags(category_ids)

        amount, discount_type = None, None
        seats = access.get("numberOfSeats") or 0
        if seats > 0:
            amount, discount_type = discount_for(access.get("accessTier"), seats)

        return UserContext(
            platform=platform_for_app(app),
            access_tier=access.get("accessTier") or None,
            community_experience=community_experience,
            tags=tags,
            add_on_discount_amount=amount,
            add_on_discount_type=discount_type,
            language_preference=language or DEFAULT_LANGUAGE,
        )
