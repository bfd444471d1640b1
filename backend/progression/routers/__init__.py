from progression.routers import dashboard, health, learner

__all__ = [
    "dashboard",
    "health",
    "learner",
]
