from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Header, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, configure_logging
from .errors import InvalidAddressError, ReferrerNotFoundError
from .models import (
    ActiveRefereesResponse,
    CycleResult,
    LeaderboardResponse,
    ReferralStreakResponse,
    ReferrerSummary,
    SyncStatusResponse,
)
from .service import QueryService, SnapshotHolder
from .source import LedgerSource, Web3LedgerSource
from .store import CheckpointStore
from .sync import SyncDriver, SyncScheduler


def create_app(
    settings: Optional[Settings] = None,
    source: Optional[LedgerSource] = None,
    run_scheduler: bool = True,
    root_path: str = "",
) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    source = source or Web3LedgerSource(settings.rpc_url, settings.contract_address, timeout=settings.rpc_timeout)
    store = CheckpointStore(settings.data_file, start_block=settings.start_block)
    holder = SnapshotHolder(store.load())
    driver = SyncDriver.from_settings(settings, source, holder, store=store)
    query_service = QueryService(holder, driver)
    scheduler = SyncScheduler(driver, settings.sync_interval_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if run_scheduler and settings.sync_interval_seconds > 0:
            scheduler.start()
        yield
        scheduler.stop(timeout=5)

    app = FastAPI(
        title="Referral Indexer API",
        description="Read-only referral analytics derived from the vault's event log",
        version="1.0.0",
        root_path=root_path,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.query_service = query_service
    app.state.sync_driver = driver

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "referral-indexer"}

    @app.get("/api/activeRefereesCount", response_model=ActiveRefereesResponse, tags=["Referrals"])
    def get_active_referees_count(address: Optional[str] = None) -> ActiveRefereesResponse:
        try:
            return query_service.get_active_referees_count(address)
        except InvalidAddressError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    @app.get("/api/referralStreak", response_model=ReferralStreakResponse, tags=["Referrals"])
    def get_referral_streak(address: Optional[str] = None) -> ReferralStreakResponse:
        try:
            return query_service.get_has_referral_streak(address)
        except InvalidAddressError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    @app.get("/api/referrer", response_model=ReferrerSummary, tags=["Referrals"])
    def get_referrer(address: Optional[str] = None) -> ReferrerSummary:
        try:
            return query_service.get_referrer(address)
        except InvalidAddressError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        except ReferrerNotFoundError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    @app.get("/api/leaderboard", response_model=LeaderboardResponse, tags=["Leaderboard"])
    def get_leaderboard() -> LeaderboardResponse:
        return LeaderboardResponse(leaderboard=query_service.get_leaderboard())

    @app.get("/api/status", response_model=SyncStatusResponse, tags=["System"])
    def get_sync_status() -> SyncStatusResponse:
        return query_service.get_sync_status()

    @app.post("/api/sync", response_model=CycleResult, tags=["System"])
    def trigger_sync(authorization: Optional[str] = Header(default=None)) -> CycleResult:
        if not settings.cron_secret:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Manual sync is disabled")
        if authorization != f"Bearer {settings.cron_secret}":
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
        return driver.trigger()

    return app


if __name__ == "__main__":
    import uvicorn

    settings = Settings.from_env()
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)
