"""
Twilio webhook signature check.

Load balancers and proxies rewrite the URL Twilio signed, so a mismatch is
only rejected when TWILIO_VALIDATE_SIGNATURE is on; otherwise it is logged.
"""

from fastapi import HTTPException, Request, status
from twilio.request_validator import RequestValidator

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

SIGNATURE_HEADER = "x-twilio-signature"


def _candidate_urls(request: Request) -> list[str]:
    urls = [str(request.url)]
    public_base = getattr(request.state, "public_base_url", None)
    if public_base:
        query = f"?{request.url.query}" if request.url.query else ""
        urls.append(f"{public_base}{request.url.path}{query}")
    return list(dict.fromkeys(urls))


async def verify_twilio_request(request: Request) -> None:
    if not settings.TWILIO_AUTH_TOKEN:
        return

    signature = request.headers.get(SIGNATURE_HEADER, "")
    params: dict[str, str] = {}
    if request.headers.get("content-type", "").startswith("application/x-www-form-urlencoded"):
        form = await request.form()
        params = {key: str(value) for key, value in form.items()}

    validator = RequestValidator(settings.TWILIO_AUTH_TOKEN)
    if any(validator.validate(url, params, signature) for url in _candidate_urls(request)):
        return

    logger.warning("Invalid Twilio signature", path=request.url.path, has_signature=bool(signature))
    if settings.TWILIO_VALIDATE_SIGNATURE:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid signature")
