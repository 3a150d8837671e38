"""Pydantic schemas for signal endpoints."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class SignalLeadResponse(BaseModel):
    id: str
    linkedin_url: str
    first_name: Optional[str]
    last_name: Optional[str]
    job_title: Optional[str]
    company: Optional[str]
    country: Optional[str]
    icp_score: int
    icp_match: bool
    status: str
    signal_count: int
    compound_score: int
    best_sentiment: Optional[str]
    pushed_to_outbound: bool
    connections_count: Optional[int] = None
    follower_count: Optional[int] = None
    open_to_work: Optional[bool] = None
    hiring: Optional[bool] = None
    current_role_started_at: Optional[str] = None
    first_seen_at: Optional[str]
    last_seen_at: Optional[str]


class SignalLeadListResponse(BaseModel):
    workspace_id: str
    count: int
    leads: List[SignalLeadResponse]


class JobRunSummaryResponse(BaseModel):
    workspace_id: str
    status: str
    monitor_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class JobRunResponse(BaseModel):
    job: str
    status: str
    executed: int
    skipped: int
    failed: int
    runs: List[JobRunSummaryResponse]
