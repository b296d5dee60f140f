from fastapi import HTTPException, Request

from inbox_categorizer.manager import CategorizerService
from inbox_categorizer.services.inbox import InboxService
from inbox_categorizer.services.reclassification import ReclassificationService
from inbox_categorizer.storage.base import RuleRepository


def _require(request: Request, name: str, detail: str = "Service not initialized"):
    value = getattr(request.app.state, name, None)
    if not value:
        raise HTTPException(status_code=500, detail=detail)
    return value


def get_service(request: Request) -> CategorizerService:
    return _require(request, "service")


def get_reclassifier(request: Request) -> ReclassificationService:
    return _require(request, "reclassifier")


def get_inbox(request: Request) -> InboxService:
    return _require(request, "inbox")


def get_rule_repository(request: Request) -> RuleRepository:
    return _require(request, "rules", detail="Rule storage not configured")
