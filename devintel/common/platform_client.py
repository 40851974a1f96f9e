"""
Platform Client

GraphQL client for the platform services the answer path consults:

- user service: user lookup by email and assistant access (tier, seats,
  brand complex, categories)
- catalog service: categories and article entitlements
- course service: lesson entitlements

Every service is optional. Lookups used for enrichment never raise; they
log and fall back to a permissive default (documents are accessible,
unknown users get the default profile).
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from .errors import PlatformError

logger = logging.getLogger("devintel.common.platform_client")

USER_BY_EMAIL_QUERY = """
query UserByEmail($email: String!) {
  userByEmail(email: $email) { _id email myCourseIds videoAccessCourseIds }
}
"""

RAG_ACCESS_QUERY = """
query CanUserAccessRag($userId: ID!, $restriction: String!, $question: String) {
  canUserAccessRag(userId: $userId, restriction: $restriction, question: $question) {
    hasRagAccess accessTier numberOfSeats selectedBrandComplexId selectedCategoryIds
  }
}
"""

CATEGORIES_QUERY = """
query Categories($keys: [String!]!, $app: String) {
  categories(keys: $keys, app: $app) { _id name designation }
}
"""

ARTICLE_ACCESS_QUERY = """
query ArticleAccessible($ids: [ID!]!) {
  articleAccessible(ids: $ids) { _id accessible }
}
"""

LESSON_ACCESS_QUERY = """
query LessonAccessible($ids: [ID!]!) {
  lessonAccessible(ids: $ids) { _id accessible }
}
"""


class PlatformClient:
    """
    Async GraphQL client for platform collaborators.

    Args:
        user_endpoint: User service GraphQL URL
        catalog_endpoint: Catalog service GraphQL URL (categories, articles)
        course_endpoint: Course service GraphQL URL (lessons)
        api_token: Service token for the user and catalog services
        timeout: Request timeout in seconds
        transport: Optional httpx transport (tests)
    """

    def __init__(
        self,
        user_endpoint: str = "",
        catalog_endpoint: str = "",
        course_endpoint: str = "",
        api_token: str = "",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.user_endpoint = user_endpoint
        self.catalog_endpoint = catalog_endpoint
        self.course_endpoint = course_endpoint
        self.api_token = api_token
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_config(cls, platform_config) -> "PlatformClient":
        return cls(
            user_endpoint=platform_config.user_endpoint,
            catalog_endpoint=platform_config.catalog_endpoint,
            course_endpoint=platform_config.course_endpoint,
            api_token=platform_config.api_token,
            timeout=platform_config.timeout,
        )

    @property
    def has_user_service(self) -> bool:
        return bool(self.user_endpoint)

    @property
    def has_catalog(self) -> bool:
        return bool(self.catalog_endpoint)

    @property
    def has_course_service(self) -> bool:
        return bool(self.course_endpoint)

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _graphql(
        self,
        endpoint: str,
        query: str,
        variables: Dict[str, Any],
        token: Optional[str] = None,
    ) -> Dict[str, Any]:
        headers = {}
        bearer = token or self.api_token
        if bearer:
            headers["Authorization"] = f"Bearer {bearer}"

        client = self._ensure_client()
        try:
            resp = await client.post(
                endpoint,
                json={"query": query, "variables": variables},
                headers=headers,
            )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise PlatformError(f"GraphQL request to {endpoint} failed: {e}") from e

        body = resp.json()
        if body.get("errors"):
            message = body["errors"][0].get("message", "unknown error")
            raise PlatformError(f"GraphQL error from {endpoint}: {message}")
        return body.get("data") or {}

    # ------------------------------------------------------------------
    # User service
    # ------------------------------------------------------------------

    async def find_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        if not self.has_user_service or not email:
            return None
        data = await self._graphql(self.user_endpoint, USER_BY_EMAIL_QUERY, {"email": email})
        return data.get("userByEmail")

    async def rag_access(
        self,
        user_id: str,
        restriction: str = "NONE",
        question: str = "",
    ) -> Optional[Dict[str, Any]]:
        if not self.has_user_service:
            return None
        data = await self._graphql(
            self.user_endpoint,
            RAG_ACCESS_QUERY,
            {"userId": user_id, "restriction": restriction, "question": question},
        )
        return data.get("canUserAccessRag")

    # ------------------------------------------------------------------
    # Catalog service
    # ------------------------------------------------------------------

    async def get_categories(self, keys: Sequence[str], app: Optional[str] = None) -> List[Dict[str, Any]]:
        """Categories by id or designation (e.g. issue "3.2025")."""
        if not self.has_catalog or not keys:
            return []
        data = await self._graphql(
            self.catalog_endpoint,
            CATEGORIES_QUERY,
            {"keys": list(keys), "app": app},
        )
        return data.get("categories") or []

    async def article_access(self, document_ids: Sequence[str], token: Optional[str]) -> Dict[str, bool]:
        if not self.has_catalog or not document_ids:
            return {}
        data = await self._graphql(
            self.catalog_endpoint, ARTICLE_ACCESS_QUERY, {"ids": list(document_ids)}, token=token,
        )
        return {a["_id"]: bool(a.get("accessible")) for a in data.get("articleAccessible") or []}

    # ------------------------------------------------------------------
    # Course service
    # ------------------------------------------------------------------

    async def lesson_access(self, document_ids: Sequence[str], token: Optional[str]) -> Dict[str, bool]:
        if not self.has_course_service or not document_ids:
            return {}
        data = await self._graphql(
            self.course_endpoint, LESSON_ACCESS_QUERY, {"ids": list(document_ids)}, token=token,
        )
        return {l["_id"]: bool(l.get("accessible")) for l in data.get("lessonAccessible") or []}

    # ------------------------------------------------------------------
    # Entitlements
    # ------------------------------------------------------------------

    async def accessible_documents(self, document_ids: Sequence[str], token: Optional[str]) -> Dict[str, bool]:
        """
        Entitlement per document id.

        Articles are checked before lessons. Documents neither service knows
        about, and every document when a service fails, count as accessible.
        """
        ids = list(dict.fromkeys(document_ids))
        articles, lessons = await asyncio.gather(
            self.article_access(ids, token),
            self.lesson_access(ids, token),
            return_exceptions=True,
        )
        if isinstance(articles, Exception):
            logger.warning("Failed to fetch article access: %s", articles)
            articles = {}
        if isinstance(lessons, Exception):
            logger.warning("Failed to fetch lesson access: %s", lessons)
            lessons = {}

        access = {}
        for doc_id in ids:
            if doc_id in articles:
                access[doc_id] = articles[doc_id]
            elif doc_id in lessons:
                access[doc_id] = lessons[doc_id]
            else:
                access[doc_id] = True
        return access

    async def is_accessible(self, document_id: str, token: Optional[str]) -> bool:
        access = await self.accessible_documents([document_id], token)
        return access.get(document_id, True)
