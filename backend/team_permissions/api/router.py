from fastapi import APIRouter

from . import audit_logs, permissions, roles

router = APIRouter()

for _router in [permissions.router, roles.router, audit_logs.router]:
    router.include_router(_router)
