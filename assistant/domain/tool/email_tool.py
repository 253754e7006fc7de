from typing import Dict, Any, Optional
import re

import httpx
import structlog

from .tool_registry import ToolContext, ToolDefinition, ToolResult
from .tool_validator import SendEmailParams

logger = structlog.get_logger(__name__)

MAX_SUBJECT_LENGTH = 200
MAX_BODY_LENGTH = 10 * 1024

_HTML_TAG = re.compile(r"<[^>]*>")


def strip_html(html: str) -> str:
    """Remove every HTML tag"""
    return _HTML_TAG.sub("", html)


class PostmarkClient:
    """Minimal PostMark transactional email client"""

    def __init__(
        self,
        api_key: Optional[str],
        from_email: Optional[str],
        api_url: str = "https://api.postmarkapp.com/email",
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self.api_key = api_key
        self.from_email = from_email
        self.api_url = api_url
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.from_email)

    async def send(self, to: str, subject: str, text_body: str, html_body: Optional[str] = None) -> Dict[str, Any]:
        """Submit one email; raises httpx.HTTPStatusError on a non-2xx answer"""

        payload = {
            "From": self.from_email,
            "To": to,
            "Subject": subject,
            "TextBody": text_body,
        }
        if html_body is not None:
            payload["HtmlBody"] = html_body

        response = await self._client.post(
            self.api_url,
            json=payload,
            headers={
                "Accept": "application/json",
                "X-Postmark-Server-Token": self.api_key,
            },
        )
        response.raise_for_status()
        return response.json()

    async def aclose(self) -> None:
        await self._client.aclose()


def _api_error(response: httpx.Response) -> str:
    try:
        message = response.json().get("Message")
    except ValueError:
        message = None
    return message or f"Email API error: {response.status_code}"


async def send_email(params: SendEmailParams, context: ToolContext) -> ToolResult:
    """Send a transactional email, guarded by rate and size limits"""

    client = context.email_client
    if client is None or not client.configured:
        return ToolResult(success=False, error="PostMark API credentials not configured")

    if not context.rate_limiter.check_limit(
        context.user_id, "email", context.email_rate_limit_calls, context.email_rate_limit_window_ms
    ):
        return ToolResult(
            success=False,
            error=(
                f"Rate limit exceeded. You can send up to {context.email_rate_limit_calls} emails per hour. "
                "Please try again later."
            ),
        )

    if len(params.subject) > MAX_SUBJECT_LENGTH:
        return ToolResult(success=False, error=f"Email subject too long (max {MAX_SUBJECT_LENGTH} characters)")

    if len(params.text_body) > MAX_BODY_LENGTH:
        return ToolResult(success=False, error=f"Email body too long (max {MAX_BODY_LENGTH} characters)")

    html_body = None
    if params.html_body:
        html_body = strip_html(params.html_body)
        if len(html_body) > MAX_BODY_LENGTH:
            return ToolResult(success=False, error=f"Email HTML body too long (max {MAX_BODY_LENGTH} characters)")

    try:
        data = await client.send(params.to, params.subject, params.text_body, html_body)
    except httpx.HTTPStatusError as e:
        logger.warning("PostMark rejected email", user_id=context.user_id, status=e.response.status_code)
        return ToolResult(success=False, error=_api_error(e.response))
    except httpx.HTTPError as e:
        logger.warning("PostMark request failed", user_id=context.user_id, error=str(e))
        return ToolResult(success=False, error=str(e) or "Failed to send email")

    context.rate_limiter.record_call(context.user_id, "email")
    logger.info("Email sent", user_id=context.user_id, message_id=data.get("MessageID"))

    return ToolResult(
        success=True,
        data={
            "messageId": data.get("MessageID"),
            "to": data.get("To"),
            "submittedAt": data.get("SubmittedAt"),
        },
        message=f"Email sent to {params.to}",
    )


SEND_EMAIL_TOOL = ToolDefinition(
    name="sendEmail",
    description="Send a transactional email via PostMark",
    parameters=SendEmailParams,
    execute=send_email,
    category="communication",
)
