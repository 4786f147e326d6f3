import base64
from typing import Dict, Optional


class BitbucketAuth:
    """
    Credentials for the Bitbucket Cloud REST API.

    A repository/workspace access token is preferred; a username plus app
    password is used otherwise. With neither, requests go out anonymously
    (public repositories only).
    """

    def __init__(
        self,
        access_token: Optional[str] = None,
        username: Optional[str] = None,
        app_password: Optional[str] = None,
    ) -> None:
        self.access_token = access_token
        self.username = username
        self.app_password = app_password

    @property
    def is_configured(self) -> bool:
        return bool(self.access_token or (self.username and self.app_password))

    def headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "User-Agent": "PR-RiskGate-Bot",
        }
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        elif self.username and self.app_password:
            raw = f"{self.username}:{self.app_password}".encode("utf-8")
            headers["Authorization"] = f"Basic {base64.b64encode(raw).decode('ascii')}"
        return headers
