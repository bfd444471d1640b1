from __future__ import annotations

from fastapi import Header, HTTPException, Request


def get_current_learner(
    request: Request,
    x_learner: str | None = Header(default=None, alias="X-Learner"),
) -> str:
    # Sessions are established by the LMS login; it leaves the user id in a cookie.
    learner = (x_learner or request.cookies.get("user_id") or "").strip()
    if not learner or learner.lower() == "guest":
        raise HTTPException(status_code=401, detail="not authenticated")

    request.state.user_id = learner
    return learner
