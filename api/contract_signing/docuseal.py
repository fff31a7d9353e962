"""DocuSeal API client.

Only the calls the contract workflow needs: create a submission straight from
PDF documents, read it back for status sync, and archive it on reset.
API reference: https://www.docuseal.com/docs/api
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from . import config
from .errors import ExternalServiceError

logger = logging.getLogger(__name__)


def signing_url(slug: Optional[str]) -> Optional[str]:
    if not slug:
        return None
    return f"{config.SIGNING_BASE_URL.rstrip('/')}/s/{slug}"


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or resp.reason_phrase
    if isinstance(body, dict):
        return str(body.get("error") or body.get("message") or resp.reason_phrase)
    return resp.reason_phrase


class DocuSealClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else config.DOCUSEAL_API_KEY
        self.base_url = (base_url or config.DOCUSEAL_API_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else config.DOCUSEAL_TIMEOUT
        self.transport = transport

    def _request(self, method: str, endpoint: str, payload: Optional[dict] = None) -> Any:
        if not self.api_key:
            raise ExternalServiceError("Signature service unavailable", "DOCUSEAL_API_KEY is not configured")
        url = f"{self.base_url}{endpoint}"
        logger.info("DocuSeal request: %s %s", method, url)
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                resp = client.request(
                    method,
                    url,
                    json=payload,
                    headers={"X-Auth-Token": self.api_key},
                )
        except httpx.TimeoutException as exc:
            logger.warning("DocuSeal request timed out: %s %s", method, url)
            raise ExternalServiceError("Signature service timed out", str(exc))
        except httpx.HTTPError as exc:
            logger.error("DocuSeal request failed: %s %s: %s", method, url, exc)
            raise ExternalServiceError("Signature service unreachable", str(exc))
        logger.info("DocuSeal response: %s %s", resp.status_code, resp.reason_phrase)
        if resp.is_error:
            message = _error_message(resp)
            logger.error("DocuSeal API error %s: %s", resp.status_code, message)
            raise ExternalServiceError("Signature service rejected the request", f"DocuSeal API error: {message}")
        try:
            return resp.json()
        except ValueError as exc:
            raise ExternalServiceError("Signature service returned an invalid response", str(exc))

    def create_submission_from_pdf(self, params: Dict[str, Any]) -> Dict[str, Any]:
        result = self._request("POST", "/submissions/pdf", params)
        submission = _as_submission(result)
        logger.info(
            "DocuSeal submission created: id=%s submitters=%d",
            submission.get("id"),
            len(submission.get("submitters") or []),
        )
        return submission

    def get_submission(self, submission_id: int) -> Dict[str, Any]:
        return _as_submission(self._request("GET", f"/submissions/{submission_id}"))

    def archive_submission(self, submission_id: int) -> Dict[str, Any]:
        return self._request("DELETE", f"/submissions/{submission_id}")


def _as_submission(result: Any) -> Dict[str, Any]:
    # Some endpoints answer with the bare list of submitters instead of a submission
    if isinstance(result, list):
        submitters: List[dict] = result
        first = submitters[0] if submitters else {}
        return {
            "id": first.get("submission_id"),
            "slug": None,
            "status": "pending",
            "submitters": submitters,
        }
    if not isinstance(result, dict):
        raise ExternalServiceError("Signature service returned an invalid response", repr(result)[:200])
    result.setdefault("submitters", [])
    return result


client = DocuSealClient()
