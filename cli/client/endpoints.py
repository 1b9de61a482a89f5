"""API Endpoint Wrappers - Type-safe API calls"""

from typing import Any

from .base import APIClient, StudyJobsError
from ..utils.config_manager import config

__all__ = ["StudyJobsClient", "StudyJobsError"]


class StudyJobsClient:
    """High-level client with typed endpoint methods"""

    def __init__(
        self,
        base_url: str | None = None,
        headers: dict[str, str] | None = None,
        transport=None,
    ):
        # Use config values if not provided
        api_config = config.load_config().get("api", {})
        final_base_url = base_url or api_config.get("base_url", "http://localhost:8000")
        final_headers = headers or dict(api_config.get("headers") or {})
        if api_config.get("user_id") and "X-User-ID" not in final_headers:
            final_headers["X-User-ID"] = str(api_config["user_id"])

        self.api = APIClient(
            base_url=final_base_url,
            timeout=int(api_config.get("timeout", 30)),
            headers=final_headers,
            transport=transport,
        )

    def __enter__(self):
        self.api.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.api.__exit__(exc_type, exc_val, exc_tb)

    # Health Check
    def health_check(self) -> dict[str, Any]:
        """Check API health status"""
        return self.api.get("/healthz")

    # Jobs Endpoints
    def create_job(
        self, type: str, payload: dict[str, Any], priority: int = 0
    ) -> dict[str, Any]:
        """Enqueue a job"""
        return self.api.post(
            "/jobs", {"type": type, "payload": payload, "priority": priority}
        )

    def get_job(self, job_id: str) -> dict[str, Any]:
        """Get specific job by ID"""
        return self.api.get(f"/jobs/{job_id}")

    def list_jobs(
        self,
        type: str | None = None,
        status: str | None = None,
        limit: int = 20,
    ) -> dict[str, Any]:
        """List jobs with filters"""
        params: dict[str, Any] = {"limit": limit}
        if type:
            params["type"] = type
        if status:
            params["status"] = status
        return self.api.get("/jobs", params)

    def get_job_stats(self) -> dict[str, Any]:
        """Get job statistics"""
        return self.api.get("/jobs/stats/overview")

    def retry_job(self, job_id: str) -> dict[str, Any]:
        """Retry a failed job"""
        return self.api.post(f"/jobs/{job_id}/retry")

    def get_rate_limit(self, type: str) -> dict[str, Any]:
        """Remaining job allowance for a type"""
        return self.api.get(f"/jobs/rate-limit/{type}")
