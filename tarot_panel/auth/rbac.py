from fastapi import Depends, HTTPException, status

from tarot_panel.auth.dependencies import get_current_worker
from tarot_panel.auth.schemas import CurrentWorker
from tarot_panel.core.models.worker import ROLE_ADMIN, ROLE_CENTRAL


def require_roles(*roles: str):
    """
    Dependency factory: resolve the caller's worker and require one of ``roles``.

    Example:
        worker: CurrentWorker = Depends(require_roles("admin", "central"))
    """

    async def _checker(worker: CurrentWorker = Depends(get_current_worker)) -> CurrentWorker:
        if worker.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="FORBIDDEN")
        return worker

    return _checker


require_admin = require_roles(ROLE_ADMIN)
require_staff = require_roles(ROLE_ADMIN, ROLE_CENTRAL)
