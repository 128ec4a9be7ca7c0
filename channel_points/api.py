import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings, get_settings
from .db import create_db_engine, create_schema, create_session_factory
from .exceptions import LedgerServiceError
from .logging_config import setup_logging
from .models import (
    ActionConfigValidation,
    AdminPointsRequest,
    AdminSetPointsRequest,
    BulkPointUpdateRequest,
    BulkUpdateResult,
    CategoryRecord,
    CreateCategoryRequest,
    CreateRewardRequest,
    CreateUserRequest,
    PendingRedemption,
    PointHistoryResponse,
    RedemptionRecord,
    RedemptionResult,
    RewardRecord,
    TransferPointsRequest,
    TransferResult,
    UpdatePremiumRequest,
    UpdateRedemptionStatusRequest,
    UpdateRewardRequest,
    UserRecord,
    ValidateActionConfigRequest,
)
from .service import LedgerService

logger = logging.getLogger(__name__)


def build_service(settings: Settings) -> LedgerService:
    engine = create_db_engine(
        settings.database_url,
        echo=settings.db_echo,
        busy_timeout=settings.sqlite_busy_timeout,
    )
    create_schema(engine)
    return LedgerService(create_session_factory(engine), settings=settings)


def get_service(request: Request) -> LedgerService:
    return request.app.state.service


def create_app(service: Optional[LedgerService] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.log_level, settings.log_format)
        owns_service = getattr(app.state, "service", None) is None
        if owns_service:
            app.state.service = build_service(settings)
        logger.info("%s %s started", settings.app_name, settings.app_version)
        yield
        if owns_service:
            app.state.service.close()

    app = FastAPI(
        title=settings.app_name,
        description="Channel points ledger: balances, reward redemptions and admin point operations",
        version=settings.app_version,
        root_path=settings.root_path,
        lifespan=lifespan,
    )
    if service is not None:
        app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LedgerServiceError)
    async def ledger_error_handler(request: Request, exc: LedgerServiceError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.kind, "detail": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "validation_error", "detail": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "internal_error", "detail": "Internal server error"},
        )

    _register_routes(app)
    return app


def _register_routes(app: FastAPI) -> None:

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "channel-points"}

    # Users

    @app.post("/users", response_model=UserRecord, status_code=status.HTTP_201_CREATED, tags=["Users"])
    def create_user(request: CreateUserRequest, service: LedgerService = Depends(get_service)):
        return service.create_user(request)

    @app.get("/users/{user_id}", response_model=UserRecord, tags=["Users"])
    def get_user(user_id: str, service: LedgerService = Depends(get_service)):
        return service.get_user(user_id)

    @app.get("/users/{user_id}/transactions", response_model=PointHistoryResponse, tags=["Users"])
    def get_user_history(
        user_id: str,
        limit: Optional[int] = Query(default=None, ge=1),
        service: LedgerService = Depends(get_service),
    ):
        entries = service.get_user_history(user_id, limit)
        user = service.get_user(user_id)
        return PointHistoryResponse(
            user_id=user_id,
            entries=entries,
            total_count=len(entries),
            current_balance=user.points,
        )

    @app.get("/users/{user_id}/redemptions", response_model=list[RedemptionRecord], tags=["Users"])
    def get_user_redemptions(user_id: str, service: LedgerService = Depends(get_service)):
        return service.get_user_redemptions(user_id)

    @app.get("/users/{user_id}/rewards", response_model=list[RewardRecord], tags=["Rewards"])
    def get_rewards_for_user(user_id: str, service: LedgerService = Depends(get_service)):
        return service.list_rewards_for_user(user_id)

    @app.get("/leaderboard", response_model=list[UserRecord], tags=["Users"])
    def get_leaderboard(limit: int = Query(default=10, ge=1, le=100), service: LedgerService = Depends(get_service)):
        return service.get_leaderboard(limit)

    # Redemption

    @app.post("/users/{user_id}/rewards/{reward_id}/redeem", response_model=RedemptionResult, tags=["Rewards"])
    def redeem_reward(user_id: str, reward_id: str, service: LedgerService = Depends(get_service)):
        return service.redeem_reward(user_id, reward_id)

    # Admin points

    @app.post("/admin/users/{user_id}/give-points", response_model=UserRecord, tags=["Admin"])
    def give_points(user_id: str, request: AdminPointsRequest, service: LedgerService = Depends(get_service)):
        return service.give_points(user_id, request.amount, request.description)

    @app.post("/admin/users/{user_id}/remove-points", response_model=UserRecord, tags=["Admin"])
    def remove_points(user_id: str, request: AdminPointsRequest, service: LedgerService = Depends(get_service)):
        return service.remove_points(user_id, request.amount, request.description)

    @app.post("/admin/users/{user_id}/set-points", response_model=UserRecord, tags=["Admin"])
    def set_points(user_id: str, request: AdminSetPointsRequest, service: LedgerService = Depends(get_service)):
        return service.set_points(user_id, request.amount, request.description)

    @app.put("/admin/users/{user_id}/premium", response_model=UserRecord, tags=["Admin"])
    def set_premium(user_id: str, request: UpdatePremiumRequest, service: LedgerService = Depends(get_service)):
        return service.set_user_premium(user_id, request.is_premium)

    @app.post("/admin/points/transfer", response_model=TransferResult, tags=["Admin"])
    def transfer_points(request: TransferPointsRequest, service: LedgerService = Depends(get_service)):
        return service.transfer_points(request.from_user_id, request.to_user_id, request.amount, request.description)

    @app.post("/owner/bulk-points", response_model=BulkUpdateResult, tags=["Owner"])
    def bulk_update_points(request: BulkPointUpdateRequest, service: LedgerService = Depends(get_service)):
        return service.bulk_update_points(request.updates)

    # Redemption processing

    @app.get("/owner/redemptions/pending", response_model=list[PendingRedemption], tags=["Owner"])
    def get_pending_redemptions(service: LedgerService = Depends(get_service)):
        return service.get_pending_redemptions()

    @app.put("/owner/redemptions/{redemption_id}/status", response_model=RedemptionRecord, tags=["Owner"])
    def update_redemption_status(
        redemption_id: str,
        request: UpdateRedemptionStatusRequest,
        service: LedgerService = Depends(get_service),
    ):
        return service.update_redemption_status(redemption_id, request.status)

    # Rewards, categories and action types

    @app.post("/admin/rewards", response_model=RewardRecord, status_code=status.HTTP_201_CREATED, tags=["Admin"])
    def create_reward(request: CreateRewardRequest, service: LedgerService = Depends(get_service)):
        return service.create_reward(request)

    @app.get("/admin/rewards", response_model=list[RewardRecord], tags=["Admin"])
    def list_rewards(service: LedgerService = Depends(get_service)):
        return service.list_rewards()

    @app.put("/admin/rewards/{reward_id}", response_model=RewardRecord, tags=["Admin"])
    def update_reward(reward_id: str, request: UpdateRewardRequest, service: LedgerService = Depends(get_service)):
        return service.update_reward(reward_id, request)

    @app.post("/categories", response_model=CategoryRecord, status_code=status.HTTP_201_CREATED, tags=["Rewards"])
    def create_category(request: CreateCategoryRequest, service: LedgerService = Depends(get_service)):
        return service.create_category(request)

    @app.get("/categories", response_model=list[CategoryRecord], tags=["Rewards"])
    def list_categories(service: LedgerService = Depends(get_service)):
        return service.list_categories()

    @app.get("/action-types", tags=["Rewards"])
    def list_action_types(service: LedgerService = Depends(get_service)):
        return service.list_action_types()

    @app.post("/action-types/{action_type}/validate", response_model=ActionConfigValidation, tags=["Rewards"])
    def validate_action_config(
        action_type: str,
        request: ValidateActionConfigRequest,
        service: LedgerService = Depends(get_service),
    ):
        verdict = service.validate_reward_action_config(action_type, request.config)
        return ActionConfigValidation(
            action_type=action_type,
            valid=verdict is True,
            reason=None if verdict is True else verdict,
        )


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
