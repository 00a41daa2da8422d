# services/portal/app/clients/gas.py
import logging
from typing import Any, Dict, Optional

import requests
from pydantic import ValidationError

from schemas.models import GasStatusResponse
from app.errors import GasApiError

logger = logging.getLogger("portal.gas")


class GasClient:
    """Thin client for the Grant Administration Service (GAS)."""

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        try:
            r = self.session.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)
            r.raise_for_status()
            return r
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise GasApiError(f"GAS {method} {url} failed with status {status}", status_code=status) from e
        except requests.RequestException as e:
            # timeouts and connection failures carry no status code
            raise GasApiError(f"GAS {method} {url} failed: {e}") from e

    def get_application_status(self, grant_code: str, reference_number: str) -> str:
        """Return the authoritative GAS status string for a submitted application."""
        url = f"{self.base_url}/grants/{grant_code}/applications/{reference_number.lower()}/status"
        r = self._request("GET", url)
        try:
            return GasStatusResponse.model_validate(r.json()).status
        except (ValueError, ValidationError) as e:
            raise GasApiError(f"GAS returned an unreadable status for {reference_number}: {e}") from e

    def submit_application(self, grant_code: str, application: Dict[str, Any]) -> int:
        """POST an application payload; returns the HTTP status GAS answered with."""
        url = f"{self.base_url}/grants/{grant_code}/applications"
        r = self._request("POST", url, json=application)
        logger.info(
            "GAS submission accepted",
            extra={"grant_code": grant_code, "status": r.status_code},
        )
        return r.status_code
