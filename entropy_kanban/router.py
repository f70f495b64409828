"""Shared router for task board endpoints."""

from __future__ import annotations

from fastapi import APIRouter

task_router = APIRouter()
