from __future__ import annotations

from fastapi import Request

from progression.services.backend import LmsBackend
from progression.services.session import SessionRegistry


def get_backend(request: Request) -> LmsBackend:
    return request.app.state.backend


def get_sessions(request: Request) -> SessionRegistry:
    return request.app.state.sessions
