import logging
from typing import Optional

from fastapi import FastAPI, Header, HTTPException, Request, status
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import load_config
from .models import (
    AccountSummary, DepositRequest, LedgerEvent, OperationResponse, OperatorFundsRequest,
    OperatorWithdrawRequest, PoolSummary, RewardRecord, RewardRequest, TeamBalance,
    TransferRequest, WithdrawRequest,
)
from .service import (
    PoolLedgerService, LedgerServiceError, InvalidAmountError, InsufficientPoolBalanceError,
    InsufficientUserBalanceError, NothingToDistributeError, TooSoonError, UnauthorizedError,
    MalformedCallError, TransferFailedError,
)
from .structured_logging import configure_structured_logging, log_event

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    InvalidAmountError: status.HTTP_400_BAD_REQUEST,
    InsufficientUserBalanceError: status.HTTP_400_BAD_REQUEST,
    InsufficientPoolBalanceError: status.HTTP_400_BAD_REQUEST,
    MalformedCallError: status.HTTP_400_BAD_REQUEST,
    UnauthorizedError: status.HTTP_403_FORBIDDEN,
    NothingToDistributeError: status.HTTP_409_CONFLICT,
    TooSoonError: status.HTTP_409_CONFLICT,
    TransferFailedError: status.HTTP_502_BAD_GATEWAY,
}


def _http_error(e: LedgerServiceError) -> HTTPException:
    code = ERROR_STATUS.get(type(e), status.HTTP_400_BAD_REQUEST)
    log_event(logger, "request_rejected", level=logging.WARNING, error=type(e).__name__, detail=str(e))
    return HTTPException(status_code=code, detail={"error": type(e).__name__, "message": str(e)})


def create_app(ledger_service: Optional[PoolLedgerService] = None) -> FastAPI:
    if ledger_service is None:
        config = load_config()
        configure_structured_logging(config.log_level)
        ledger_service = PoolLedgerService(config=config)

    app = FastAPI(
        title="Staking Pool Ledger API",
        description="Pooled staking ledger with proportional reward distribution",
        version="1.0.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.ledger_service = ledger_service

    @app.exception_handler(RequestValidationError)
    async def amount_validation_handler(request: Request, exc: RequestValidationError):
        amount_errors = [err for err in exc.errors() if "amount" in err.get("loc", ())]
        if not amount_errors:
            return await request_validation_exception_handler(request, exc)
        error = InvalidAmountError(f"Amount must be a JSON integer: {amount_errors[0].get('msg')}")
        http_error = _http_error(error)
        return JSONResponse(status_code=http_error.status_code, content={"detail": http_error.detail})

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "staking-pool-ledger"}

    @app.post("/deposits", response_model=OperationResponse, status_code=status.HTTP_201_CREATED, tags=["Depositors"])
    def deposit(request: DepositRequest, x_caller_id: str = Header(...)) -> OperationResponse:
        try:
            return ledger_service.deposit_user_funds(x_caller_id, request.amount)
        except LedgerServiceError as e:
            raise _http_error(e)

    @app.post("/withdrawals", response_model=OperationResponse, tags=["Depositors"])
    def withdraw(request: WithdrawRequest, x_caller_id: str = Header(...)) -> OperationResponse:
        amount = None if request.amount == "all" else request.amount
        try:
            return ledger_service.withdraw_user_funds(x_caller_id, amount)
        except LedgerServiceError as e:
            raise _http_error(e)

    @app.post("/transfers", response_model=OperationResponse, tags=["Depositors"])
    def transfer(request: TransferRequest, x_caller_id: str = Header(...)) -> OperationResponse:
        try:
            return ledger_service.transfer_shares(x_caller_id, request.recipient, request.amount)
        except LedgerServiceError as e:
            raise _http_error(e)

    @app.post("/rewards", response_model=OperationResponse, status_code=status.HTTP_201_CREATED, tags=["Operator"])
    def inject_reward(request: RewardRequest, x_caller_id: str = Header(...)) -> OperationResponse:
        try:
            return ledger_service.inject_reward(x_caller_id, request.amount)
        except LedgerServiceError as e:
            raise _http_error(e)

    @app.post("/operator/funds", response_model=OperationResponse, tags=["Operator"])
    def fund_operator(request: OperatorFundsRequest, x_caller_id: str = Header(...)) -> OperationResponse:
        try:
            return ledger_service.receive_operator_funds(x_caller_id, request.amount, request.data)
        except LedgerServiceError as e:
            raise _http_error(e)

    @app.post("/operator/withdrawals", response_model=OperationResponse, tags=["Operator"])
    def withdraw_operator(request: OperatorWithdrawRequest, x_caller_id: str = Header(...)) -> OperationResponse:
        try:
            return ledger_service.withdraw_operator_funds(x_caller_id, request.amount)
        except LedgerServiceError as e:
            raise _http_error(e)

    @app.get("/pool", response_model=PoolSummary, tags=["Pool"])
    def get_pool() -> PoolSummary:
        return ledger_service.get_pool_state()

    @app.get("/pool/rewards", response_model=list[RewardRecord], tags=["Pool"])
    def get_reward_history(limit: int = 50, offset: int = 0) -> list[RewardRecord]:
        return ledger_service.get_reward_history(limit, offset)

    @app.get("/pool/team-balance", response_model=TeamBalance, tags=["Pool"])
    def get_team_balance() -> TeamBalance:
        pool = ledger_service.get_pool_state()
        return TeamBalance(team_balance=pool.team_balance, vault_balance=pool.vault_balance)

    @app.get("/accounts/{identity}", response_model=AccountSummary, tags=["Depositors"])
    def get_account(identity: str) -> AccountSummary:
        return ledger_service.get_account(identity)

    @app.get("/events", response_model=list[LedgerEvent], tags=["Pool"])
    def get_events(identity: Optional[str] = None, limit: int = 50, offset: int = 0) -> list[LedgerEvent]:
        return ledger_service.get_events(identity, limit, offset)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
