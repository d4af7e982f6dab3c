from fastapi import HTTPException, Request, status

from moneyflows.services.errors import RuleNotFoundError, ValidationError
from moneyflows.services.money_flow_service import MoneyFlowEngine


def get_engine(request: Request) -> MoneyFlowEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Engine not initialized")
    return engine


def http_error(exc: ValidationError) -> HTTPException:
    """Map engine validation failures onto HTTP status codes."""
    if isinstance(exc, RuleNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Automation rule not found")
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=exc.message)
