"""Client helpers for calling the DERMAI API.

:class:`SessionCache` remembers the last signed-in user's public profile
so a frontend does not have to prompt for login again. It is a local
convenience only; the server never reads it.
"""

from __future__ import annotations

import json
import logging
import mimetypes
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)

API_BASE_URL = "http://localhost:3000/api"
CURRENT_USER_KEY = "currentUser"


class ApiError(Exception):
    """Raised when the API answers with an error status."""

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"{status_code}: {message}")


class SessionCache:
    """Client-scoped storage for the current user's profile."""

    def __init__(self) -> None:
        self._items: Dict[str, str] = {}

    def get_current_user(self) -> Optional[Dict[str, Any]]:
        raw = self._items.get(CURRENT_USER_KEY)
        return json.loads(raw) if raw else None

    def set_current_user(self, user: Dict[str, Any]) -> None:
        self._items[CURRENT_USER_KEY] = json.dumps(user)

    def clear_current_user(self) -> None:
        self._items.pop(CURRENT_USER_KEY, None)


class DermaiClient:
    """Thin wrapper over the HTTP API.

    ``http`` is anything with ``get``/``post`` methods returning
    requests-style responses; a :class:`requests.Session` by default.
    """

    def __init__(
        self,
        base_url: str = API_BASE_URL,
        http=None,
        cache: Optional[SessionCache] = None,
        timeout: float = 10,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.http = http if http is not None else requests.Session()
        self.cache = cache if cache is not None else SessionCache()
        self.timeout = timeout

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _handle(self, response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if response.status_code >= 400:
            message = payload.get("error") if isinstance(payload, dict) else None
            logger.info("api error %s: %s", response.status_code, message)
            raise ApiError(response.status_code, message or "Request failed")
        return payload

    def _post(self, path: str, **kwargs) -> Dict[str, Any]:
        return self._handle(self.http.post(self._url(path), timeout=self.timeout, **kwargs))

    def _get(self, path: str) -> Dict[str, Any]:
        return self._handle(self.http.get(self._url(path), timeout=self.timeout))

    @property
    def current_user(self) -> Optional[Dict[str, Any]]:
        return self.cache.get_current_user()

    def health(self) -> Dict[str, Any]:
        return self._get("health")

    def signup(self, username: str, email: str, password: str) -> int:
        data = self._post(
            "signup", json={"username": username, "email": email, "password": password}
        )
        return data["userId"]

    def signin(self, email: str, password: str) -> Dict[str, Any]:
        """Sign in and remember the returned profile."""
        data = self._post("signin", json={"email": email, "password": password})
        self.cache.set_current_user(data["user"])
        return data["user"]

    def logout(self) -> None:
        self.cache.clear_current_user()

    def _default_user_id(self, user_id: Optional[int]) -> Optional[int]:
        if user_id is not None:
            return user_id
        user = self.current_user
        return user["id"] if user else None

    def upload_image(self, path, user_id: Optional[int] = None) -> Dict[str, Any]:
        """Upload an image file, attributed to the current user when signed in."""
        path = Path(path)
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        owner = self._default_user_id(user_id)
        data = {"userId": str(owner)} if owner is not None else {}
        with open(path, "rb") as fh:
            return self._post(
                "upload", files={"image": (path.name, fh, content_type)}, data=data
            )

    def save_detection_result(
        self,
        disease: str,
        accuracy: float,
        medicine: str,
        image_id: Optional[int] = None,
        user_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        body = {
            "imageId": image_id,
            "userId": self._default_user_id(user_id),
            "disease": disease,
            "accuracy": accuracy,
            "medicine": medicine,
        }
        return self._post("detection-result", json=body)

    def history(self, user_id: Optional[int] = None) -> List[Dict[str, Any]]:
        owner = self._default_user_id(user_id)
        if owner is None:
            raise ValueError("user_id is required when nobody is signed in")
        return self._get(f"history/{owner}")["history"]
