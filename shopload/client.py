"""
HTTP helpers shared by scenarios and runners.
"""

from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry


def create_session(pool_size: int = 10, retries: int = 0) -> requests.Session:
    """Create HTTP session with connection pooling and optional retries."""
    session = requests.Session()
    retry = Retry(total=retries, backoff_factor=0.1, status_forcelist=[502, 503, 504])
    adapter = HTTPAdapter(max_retries=retry, pool_connections=pool_size, pool_maxsize=pool_size)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def safe_json(response: Any) -> Dict[str, Any]:
    """
    Return response JSON as dict, or an empty dict if parsing fails.

    Error responses may carry non-JSON bodies (proxy pages, empty bodies on
    5xx), and some endpoints answer with a JSON ``null``. Both read as "no
    fields" rather than raising into the iteration.
    """
    if response is None:
        return {}
    try:
        data = response.json()
    except ValueError:
        return {}

    if isinstance(data, dict):
        return data
    return {}


def auth_header(token: Optional[str]) -> Dict[str, str]:
    """
    Build bearer auth headers.

    A missing token is sent as an empty bearer value so the request still
    goes out and the server's rejection is measured.
    """
    return {
        "Authorization": f"Bearer {token or ''}",
        "Content-Type": "application/json",
    }
