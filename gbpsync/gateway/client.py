"""
HTTP gateway to the Google Business Profile APIs.

Google spreads the product over several API surfaces. Locations live in
the business information API, questions in the Q&A API, and reviews,
posts, media and insights are still served by the legacy v4 API. This
module hides that split behind one client that attaches the bearer
token, classifies failures into the engine's error taxonomy and walks
paginated collections.
"""

import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from ..exceptions import (
    AuthExpiredError,
    InsufficientScopesError,
    NotFoundError,
    ProviderError,
    TransientNetworkError,
    ValidationError,
    create_error_context,
)
from ..models.base import utcnow
from ..retry import retry_async

logger = logging.getLogger(__name__)

LOCATION_READ_MASK = "name,title,storefrontAddress,phoneNumbers,websiteUri,categories"
DEFAULT_PAGE_SIZE = 100
REVIEW_PAGE_SIZE = 50
# The Q&A API caps page size at 10
QUESTION_PAGE_SIZE = 10
METRICS_WINDOW_DAYS = 30


class ApiSurface(Enum):
    """Base URLs of the Google API surfaces the engine talks to."""
    BUSINESS_INFO = "https://mybusinessbusinessinformation.googleapis.com/v1"
    QANDA = "https://mybusinessqanda.googleapis.com/v1"
    V4 = "https://mybusiness.googleapis.com/v4"


def _error_details(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    if isinstance(data, dict) and isinstance(data.get("error"), dict):
        return data["error"]
    return {}


def _is_scope_error(response: httpx.Response) -> bool:
    text = response.text.lower()
    if "access_token_scope_insufficient" in text:
        return True
    return "insufficient" in text and "scope" in text


class GoogleBusinessGateway:
    """Thin async client for the Google Business Profile APIs.

    Read calls retry transient failures with exponential backoff. Write
    calls are sent exactly once; whether to retry a publish is the
    caller's decision.
    """

    def __init__(self,
                 http_client: Optional[httpx.AsyncClient] = None,
                 timeout: float = 30.0,
                 retry_attempts: int = 3,
                 backoff_seconds: float = 0.5):
        self.retry_attempts = retry_attempts
        self.backoff_seconds = backoff_seconds
        self._timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client if this gateway created it."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def request(self,
                      method: str,
                      surface: ApiSurface,
                      path: str,
                      token: str,
                      params: Optional[Dict[str, Any]] = None,
                      json: Optional[Dict[str, Any]] = None,
                      retry: bool = True,
                      account_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Perform one API call and return the decoded JSON body.

        Args:
            method: HTTP method
            surface: Which Google API to call
            path: Resource path relative to the surface base URL
            token: Bearer access token
            params: Query parameters
            json: JSON request body
            retry: Retry transient failures; disable for writes
            account_id: Used for error context and logs only

        Returns:
            Response body, or an empty dict for empty responses

        Raises:
            AuthExpiredError: 401 from Google
            InsufficientScopesError: 401/403 caused by missing scopes
            NotFoundError: 404
            ValidationError: 400 or 422
            TransientNetworkError: timeouts, transport errors, 429, 5xx
            ProviderError: any other non-2xx response
        """
        url = f"{surface.value}/{path.lstrip('/')}"

        async def send() -> Dict[str, Any]:
            return await self._send(method, url, token, params, json, account_id)

        if not retry:
            return await send()
        return await retry_async(
            send,
            attempts=self.retry_attempts,
            backoff_seconds=self.backoff_seconds,
            operation=f"{method} {path}",
        )

    async def _send(self,
                    method: str,
                    url: str,
                    token: str,
                    params: Optional[Dict[str, Any]],
                    json: Optional[Dict[str, Any]],
                    account_id: Optional[str]) -> Dict[str, Any]:
        context = create_error_context(operation=f"{method} {url}", account_id=account_id)
        client = await self._get_http_client()

        try:
            response = await client.request(
                method,
                url,
                params=params,
                json=json,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"Request to {url} timed out: {e}", context=context, cause=e)
        except httpx.TransportError as e:
            raise TransientNetworkError(f"Request to {url} failed: {e}", context=context, cause=e)

        if response.is_success:
            if not response.content:
                return {}
            try:
                body = response.json()
            except ValueError:
                return {}
            return body if isinstance(body, dict) else {"items": body}

        self._raise_for_status(response, context)
        return {}

    def _raise_for_status(self, response: httpx.Response, context) -> None:
        status = response.status_code
        details = _error_details(response)
        message = details.get("message") or response.reason_phrase or f"HTTP {status}"
        body = response.text
        logger.warning(f"Google API error {status} for {context.operation}: {message}")

        if status in (401, 403) and _is_scope_error(response):
            raise InsufficientScopesError(
                f"Insufficient scopes: {message}",
                status_code=status,
                provider_body=body,
                context=context,
            )
        if status == 401:
            raise AuthExpiredError(
                f"Access token rejected: {message}",
                error_code="ACCESS_TOKEN_REJECTED",
                status_code=status,
                provider_body=body,
                context=context,
            )
        if status == 404:
            raise NotFoundError(message, status_code=status, provider_body=body, context=context)
        if status in (400, 422):
            raise ValidationError(message, status_code=status, provider_body=body, context=context)
        if status == 429 or status >= 500:
            raise TransientNetworkError(
                f"Google API returned {status}: {message}",
                status_code=status,
                provider_body=body,
                context=context,
            )
        raise ProviderError(
            message,
            status_code=status,
            provider_body=body,
            error_code="PROVIDER_FORBIDDEN" if status == 403 else "PROVIDER_ERROR",
            context=context,
        )

    async def paginate(self,
                       surface: ApiSurface,
                       path: str,
                       token: str,
                       items_key: str,
                       params: Optional[Dict[str, Any]] = None,
                       page_size: int = DEFAULT_PAGE_SIZE,
                       first_page_only: bool = False,
                       account_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Collect ``items_key`` across all pages of a list endpoint."""
        items: List[Dict[str, Any]] = []
        query = dict(params or {})
        query["pageSize"] = page_size
        page_token = None

        while True:
            if page_token:
                query["pageToken"] = page_token
            body = await self.request(
                "GET", surface, path, token, params=query, account_id=account_id
            )
            items.extend(body.get(items_key) or [])
            page_token = body.get("nextPageToken")
            if not page_token or first_page_only:
                break

        return items

    # Reads

    async def list_accounts(self, token: str) -> List[Dict[str, Any]]:
        """List the Google accounts the token can manage."""
        return await self.paginate(ApiSurface.V4, "accounts", token, "accounts")

    async def list_locations(self,
                             token: str,
                             account_resource: str,
                             first_page_only: bool = False,
                             account_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self.paginate(
            ApiSurface.BUSINESS_INFO,
            f"{account_resource}/locations",
            token,
            "locations",
            params={"readMask": LOCATION_READ_MASK},
            first_page_only=first_page_only,
            account_id=account_id,
        )

    async def list_reviews(self,
                           token: str,
                           location_resource: str,
                           first_page_only: bool = False,
                           account_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self.paginate(
            ApiSurface.V4, f"{location_resource}/reviews", token, "reviews",
            page_size=REVIEW_PAGE_SIZE, first_page_only=first_page_only, account_id=account_id,
        )

    async def list_local_posts(self,
                               token: str,
                               location_resource: str,
                               first_page_only: bool = False,
                               account_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self.paginate(
            ApiSurface.V4, f"{location_resource}/localPosts", token, "localPosts",
            first_page_only=first_page_only, account_id=account_id,
        )

    async def list_media(self,
                         token: str,
                         location_resource: str,
                         first_page_only: bool = False,
                         account_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self.paginate(
            ApiSurface.V4, f"{location_resource}/media", token, "mediaItems",
            first_page_only=first_page_only, account_id=account_id,
        )

    async def list_questions(self,
                             token: str,
                             location_resource: str,
                             first_page_only: bool = False,
                             account_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Questions are keyed by the short ``locations/{id}`` name."""
        return await self.paginate(
            ApiSurface.QANDA, f"{location_resource}/questions", token, "questions",
            page_size=QUESTION_PAGE_SIZE, first_page_only=first_page_only, account_id=account_id,
        )

    async def fetch_metrics(self,
                            token: str,
                            account_resource: str,
                            location_resource: str,
                            now: Optional[datetime] = None,
                            account_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Basic insights for one location over the trailing window."""
        end = now or utcnow()
        start = end - timedelta(days=METRICS_WINDOW_DAYS)
        body = await self.request(
            "POST",
            ApiSurface.V4,
            f"{account_resource}/locations:reportInsights",
            token,
            json={
                "locationNames": [location_resource],
                "basicRequest": {
                    "metricRequests": [{"metric": "ALL"}],
                    "timeRange": {
                        "startTime": start.strftime("%Y-%m-%dT%H:%M:%SZ"),
                        "endTime": end.strftime("%Y-%m-%dT%H:%M:%SZ"),
                    },
                },
            },
            account_id=account_id,
        )
        return body.get("locationMetrics") or []

    # Writes, sent exactly once

    async def create_local_post(self,
                                token: str,
                                location_resource: str,
                                post: Dict[str, Any],
                                account_id: Optional[str] = None) -> Dict[str, Any]:
        return await self.request(
            "POST", ApiSurface.V4, f"{location_resource}/localPosts", token,
            json=post, retry=False, account_id=account_id,
        )

    async def reply_to_review(self,
                              token: str,
                              review_resource: str,
                              comment: str,
                              account_id: Optional[str] = None) -> Dict[str, Any]:
        return await self.request(
            "PUT", ApiSurface.V4, f"{review_resource}/reply", token,
            json={"comment": comment}, retry=False, account_id=account_id,
        )

    async def upsert_answer(self,
                            token: str,
                            question_resource: str,
                            text: str,
                            account_id: Optional[str] = None) -> Dict[str, Any]:
        return await self.request(
            "POST", ApiSurface.QANDA, f"{question_resource}/answers:upsert", token,
            json={"answer": {"text": text}}, retry=False, account_id=account_id,
        )
