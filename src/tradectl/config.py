from __future__ import annotations

from dataclasses import dataclass

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tradectl.persistence.sqlite.sqlite_connection import DEFAULT_BUSY_TIMEOUT_MS
from tradectl.persistence.uow import UnitOfWorkFactory
from tradectl.services.pause_coordinator import PauseCoordinator
from tradectl.services.resilient_executor import BreakerSettings, CircuitBreaker, ResilientExecutor
from tradectl.services.similarity_service import DecisionSimilarityService, SimilaritySettings


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    state_db_path: str = Field(default="tradectl_state.db", alias="STATE_DB_PATH")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    store_busy_timeout_ms: int = Field(
        default=DEFAULT_BUSY_TIMEOUT_MS, alias="STORE_BUSY_TIMEOUT_MS"
    )

    db_breaker_enabled: bool = Field(default=True, alias="DB_BREAKER_ENABLED")
    db_breaker_min_requests: int = Field(default=10, alias="DB_BREAKER_MIN_REQUESTS")
    db_breaker_failure_ratio: float = Field(default=0.6, alias="DB_BREAKER_FAILURE_RATIO")
    db_breaker_open_timeout_seconds: float = Field(
        default=15.0, alias="DB_BREAKER_OPEN_TIMEOUT_SECONDS"
    )
    db_breaker_half_open_max_requests: int = Field(
        default=1, alias="DB_BREAKER_HALF_OPEN_MAX_REQUESTS"
    )
    db_breaker_count_interval_seconds: float = Field(
        default=10.0, alias="DB_BREAKER_COUNT_INTERVAL_SECONDS"
    )
    db_breaker_consecutive_failures: int = Field(
        default=5, alias="DB_BREAKER_CONSECUTIVE_FAILURES"
    )

    similarity_tolerance: float = Field(default=0.15, alias="SIMILARITY_TOLERANCE")
    similarity_lookback_days: int = Field(default=30, alias="SIMILARITY_LOOKBACK_DAYS")
    similarity_overfetch_factor: int = Field(default=3, alias="SIMILARITY_OVERFETCH_FACTOR")
    similarity_max_limit: int = Field(default=1000, alias="SIMILARITY_MAX_LIMIT")

    @field_validator("state_db_path")
    def validate_state_db_path(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("STATE_DB_PATH cannot be empty")
        return value.strip()

    @field_validator("store_busy_timeout_ms")
    def validate_store_busy_timeout_ms(cls, value: int) -> int:
        if value < 0:
            raise ValueError("STORE_BUSY_TIMEOUT_MS must be >= 0")
        return value

    @field_validator("db_breaker_min_requests")
    def validate_db_breaker_min_requests(cls, value: int) -> int:
        if value < 1:
            raise ValueError("DB_BREAKER_MIN_REQUESTS must be >= 1")
        return value

    @field_validator("db_breaker_failure_ratio")
    def validate_db_breaker_failure_ratio(cls, value: float) -> float:
        if not 0.0 < value <= 1.0:
            raise ValueError("DB_BREAKER_FAILURE_RATIO must be within (0, 1]")
        return value

    @field_validator("db_breaker_open_timeout_seconds", "db_breaker_count_interval_seconds")
    def validate_db_breaker_durations(cls, value: float) -> float:
        if value < 0:
            raise ValueError("breaker durations must be >= 0")
        return value

    @field_validator("db_breaker_half_open_max_requests")
    def validate_db_breaker_half_open_max_requests(cls, value: int) -> int:
        if value < 1:
            raise ValueError("DB_BREAKER_HALF_OPEN_MAX_REQUESTS must be >= 1")
        return value

    @field_validator("db_breaker_consecutive_failures")
    def validate_db_breaker_consecutive_failures(cls, value: int) -> int:
        if value < 0:
            raise ValueError("DB_BREAKER_CONSECUTIVE_FAILURES must be >= 0")
        return value

    @field_validator("similarity_tolerance")
    def validate_similarity_tolerance(cls, value: float) -> float:
        if not 0.0 <= value < 2.0:
            raise ValueError("SIMILARITY_TOLERANCE must be within [0, 2)")
        return value

    @field_validator("similarity_lookback_days", "similarity_max_limit")
    def validate_similarity_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("similarity lookback and max limit must be > 0")
        return value

    @field_validator("similarity_overfetch_factor")
    def validate_similarity_overfetch_factor(cls, value: int) -> int:
        if value < 1:
            raise ValueError("SIMILARITY_OVERFETCH_FACTOR must be >= 1")
        return value

    def breaker_settings(self) -> BreakerSettings:
        return BreakerSettings(
            min_requests=self.db_breaker_min_requests,
            failure_ratio=self.db_breaker_failure_ratio,
            open_timeout_seconds=self.db_breaker_open_timeout_seconds,
            half_open_max_requests=self.db_breaker_half_open_max_requests,
            count_interval_seconds=self.db_breaker_count_interval_seconds,
            consecutive_failure_threshold=self.db_breaker_consecutive_failures,
        )

    def similarity_settings(self) -> SimilaritySettings:
        return SimilaritySettings(
            tolerance=self.similarity_tolerance,
            lookback_days=self.similarity_lookback_days,
            overfetch_factor=self.similarity_overfetch_factor,
            max_limit=self.similarity_max_limit,
        )

    def uow_factory(self) -> UnitOfWorkFactory:
        return UnitOfWorkFactory(
            db_path=self.state_db_path, busy_timeout_ms=self.store_busy_timeout_ms
        )


def build_executor(settings: Settings) -> ResilientExecutor:
    if not settings.db_breaker_enabled:
        return ResilientExecutor()
    return ResilientExecutor(CircuitBreaker(settings=settings.breaker_settings()))


def build_pause_coordinator(settings: Settings, *, executor: ResilientExecutor) -> PauseCoordinator:
    return PauseCoordinator(settings.uow_factory(), executor=executor)


def build_similarity_service(
    settings: Settings, *, executor: ResilientExecutor
) -> DecisionSimilarityService:
    return DecisionSimilarityService(
        settings.uow_factory(), settings=settings.similarity_settings(), executor=executor
    )


@dataclass(frozen=True)
class ControlPlane:
    executor: ResilientExecutor
    pause_coordinator: PauseCoordinator
    similarity_service: DecisionSimilarityService


def build_control_plane(settings: Settings) -> ControlPlane:
    """Wire both services onto one executor so the process has a single database breaker."""
    executor = build_executor(settings)
    return ControlPlane(
        executor=executor,
        pause_coordinator=build_pause_coordinator(settings, executor=executor),
        similarity_service=build_similarity_service(settings, executor=executor),
    )
