"""API Endpoint Wrappers - Typed calls for the job endpoints"""

from typing import Any

from ..utils.config_manager import config
from .base import APIClient, JobRelayError

__all__ = ["JobRelayClient", "JobRelayError"]


class JobRelayClient:
    """High-level client with typed endpoint methods"""

    def __init__(
        self,
        base_url: str | None = None,
        headers: dict[str, str] | None = None
    ):
        # Use config values if not provided
        api_config = config.load_config().get("api", {})
        final_base_url = base_url or api_config.get("base_url", "http://localhost:8000")
        final_headers = dict(headers or api_config.get("headers") or {})

        token = api_config.get("token")
        if token and "Authorization" not in final_headers:
            final_headers["Authorization"] = f"Bearer {token}"

        self.api = APIClient(
            base_url=final_base_url,
            timeout=int(api_config.get("timeout", 30)),
            headers=final_headers
        )

    def __enter__(self):
        self.api.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.api.__exit__(exc_type, exc_val, exc_tb)

    # Health Check
    def health_check(self) -> dict[str, Any]:
        """Check API health status"""
        return self.api.get("/health")

    # Job Endpoints
    def create_job(self, name: str, data: dict[str, Any]) -> dict[str, Any]:
        """Create a job"""
        return self.api.post("/jobs", {"name": name, "data": data})

    def list_jobs(
        self, status: str | None = None, limit: int | None = None
    ) -> list[dict[str, Any]]:
        """List jobs, newest first"""
        params: dict[str, Any] = {}
        if status:
            params["status"] = status
        if limit:
            params["limit"] = limit
        return self.api.get("/jobs", params)

    def get_job(self, job_id: str) -> dict[str, Any]:
        """Get specific job by ID"""
        return self.api.get(f"/jobs/{job_id}")

    def retry_job(self, job_id: str) -> dict[str, Any]:
        """Retry a failed job"""
        return self.api.post(f"/jobs/{job_id}/retry")

    def delete_job(self, job_id: str) -> dict[str, Any]:
        """Delete a job"""
        return self.api.delete(f"/jobs/{job_id}")
