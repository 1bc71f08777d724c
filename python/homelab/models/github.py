"""
homelab/models/github.py

Subset of the GitHub Actions self-hosted runner API payloads we rely on.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class GitHubRunner(BaseModel):
    id: int
    name: str
    status: Optional[str] = None
    busy: bool = False


class RunnerList(BaseModel):
    total_count: int = 0
    runners: List[GitHubRunner] = Field(default_factory=list)


class RegistrationToken(BaseModel):
    token: str
    expires_at: Optional[str] = None
