from fastapi import APIRouter
from app.api.v1.endpoints import ledger, balances

api_router = APIRouter()

api_router.include_router(ledger.router, prefix="/ledger", tags=["ledger"])
api_router.include_router(balances.router, prefix="/balances", tags=["balances"])
