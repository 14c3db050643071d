from src.services import (
    completion_service,
    message_service,
    presence_service,
    verification_service,
)


__all__ = [
    "completion_service",
    "message_service",
    "presence_service",
    "verification_service",
]
