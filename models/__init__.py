from models.admin import Admin
from models.application import APPLICATION_STATUSES, DEFAULT_STATUS, VisaApplication

__all__ = [
    "Admin",
    "APPLICATION_STATUSES",
    "DEFAULT_STATUS",
    "VisaApplication",
]
