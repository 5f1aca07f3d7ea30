"""
API routers package
"""
from attendance_trust.api import (
    system,
    attendance,
    biometrics,
    location,
    fraud,
)

__all__ = [
    "system",
    "attendance",
    "biometrics",
    "location",
    "fraud",
]
