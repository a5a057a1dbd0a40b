"""Python client for the Bitbucket management REST API"""

from typing import Any, Dict, Optional

import httpx


class APIError(Exception):
    """Base exception for API errors"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(APIError):
    """Resource not found"""

    pass


class UnauthorizedError(APIError):
    """Unauthorized access"""

    pass


class ConflictError(APIError):
    """Resource already exists"""

    pass


class ProjectAPI:
    """Project operations"""

    def __init__(self, client: "Client"):
        self.client = client

    def get(self, key: str) -> Dict[str, Any]:
        """Get project details"""
        return self.client._get(f"/rest/api/1.0/projects/{key}")

    def create(self, key: str, name: str, description: str = "") -> Dict[str, Any]:
        """Create project"""
        payload = {"key": key, "name": name, "description": description}
        return self.client._post("/rest/api/1.0/projects", payload)


class RepositoryAPI:
    """Repository operations for a specific project"""

    def __init__(self, client: "Client", project_key: str):
        self.client = client
        self.project_key = project_key

    def get(self, slug: str) -> Dict[str, Any]:
        """Get repository details"""
        return self.client._get(f"/rest/api/1.0/projects/{self.project_key}/repos/{slug}")

    def create(self, name: str, scm_id: str = "git", forkable: bool = True) -> Dict[str, Any]:
        """Create repository"""
        payload = {"name": name, "scmId": scm_id, "forkable": forkable}
        return self.client._post(f"/rest/api/1.0/projects/{self.project_key}/repos", payload)


class StatusAPI:
    """Application status"""

    def __init__(self, client: "Client"):
        self.client = client

    def state(self) -> str:
        """Application state reported by /status (RUNNING, FIRST_RUN, ...)"""
        response = self.client._get("/status")
        return (response or {}).get("state", "")


class Client:
    """Bitbucket management API client"""

    def __init__(
        self,
        base_url: str = "https://localhost:8443",
        username: str = "",
        password: str = "",
        timeout: float = 30.0,
        verify: bool = False,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.username = username
        self.password = password
        self.timeout = timeout
        self.verify = verify
        self.transport = transport

        self.projects = ProjectAPI(self)
        self.status = StatusAPI(self)

    def repositories(self, project_key: str) -> RepositoryAPI:
        """Get repository API for project"""
        return RepositoryAPI(self, project_key)

    def _get(self, path: str) -> Any:
        """Execute GET request"""
        return self._request("GET", path)

    def _post(self, path: str, data: Any = None) -> Any:
        """Execute POST request"""
        return self._request("POST", path, json=data)

    def _request(self, method: str, path: str, **kwargs) -> Any:
        """Execute HTTP request"""
        url = self.base_url + path

        auth = (self.username, self.password) if self.username else None

        with httpx.Client(timeout=self.timeout, verify=self.verify, transport=self.transport) as client:
            response = client.request(method, url, auth=auth, **kwargs)

            if response.status_code == 404:
                raise NotFoundError(f"Resource not found: {path}", 404)
            elif response.status_code in (401, 403):
                raise UnauthorizedError("Unauthorized", response.status_code)
            elif response.status_code == 409:
                raise ConflictError(f"Resource already exists: {path}", 409)
            elif response.status_code >= 400:
                raise APIError(
                    f"API error {response.status_code}: {response.text}", response.status_code
                )

            if response.text:
                return response.json()

            return None
