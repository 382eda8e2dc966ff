from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from studio.core.logging_config import actor_id_ctx_var
from studio.core.security import decode_token
from studio.services.catalog import AssetCatalog
from studio.services.delivery import AccessContext, DeliveryWorkflow, Role
from studio.services.notifications import OutboxNotifier

bearer_scheme = HTTPBearer(auto_error=False)


async def get_access_context(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> AccessContext:
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    payload = decode_token(credentials.credentials)
    if not payload or payload.get("type") != "access":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    subject = str(payload.get("sub") or "").strip()
    if not subject:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
    try:
        role = Role(str(payload.get("role") or ""))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload") from None

    actor_id_ctx_var.set(subject)
    return AccessContext(actor_id=subject, role=role, display_name=payload.get("name"))


async def require_operator(context: AccessContext = Depends(get_access_context)) -> AccessContext:
    if not context.is_operator:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Operator access required")
    return context


def get_catalog(request: Request) -> AssetCatalog:
    return request.app.state.catalog


def get_workflow(request: Request) -> DeliveryWorkflow:
    return request.app.state.workflow


def get_notifier(request: Request) -> OutboxNotifier:
    return request.app.state.notifier
