from pydantic import BaseModel, Field
from dotenv import load_dotenv
import os

load_dotenv()  # loads .env if present

DAY_MS = 24 * 60 * 60 * 1000
HOUR_MS = 60 * 60 * 1000


def _env(name: str, default: str):
    # raw string; pydantic does the conversion so bad values raise ValidationError
    return Field(default_factory=lambda: os.getenv(name, default), validate_default=True)


class MetricsConfig(BaseModel):
    retention_period_ms: int = Field(DAY_MS, gt=0, description="Max age of raw points / histogram samples")
    max_histogram_samples: int = Field(10_000, ge=1, description="Hard cap per histogram series (oldest evicted)")
    detailed_metrics_enabled: bool = Field(True, description="Also keep raw per-point series")
    cleanup_interval_s: float = Field(3600.0, gt=0, description="Period of the background cleanup sweep")
    timer_max_age_ms: int = Field(HOUR_MS, gt=0, description="Pending timers older than this are swept")


class Settings(BaseModel):
    app_name: str = _env("EDUMETRICS_APP_NAME", "edumetrics")
    log_level: str = _env("LOG_LEVEL", "INFO")
    metrics_retention_ms: int = _env("METRICS_RETENTION_MS", str(DAY_MS))
    metrics_max_histogram_samples: int = _env("METRICS_MAX_HISTOGRAM_SAMPLES", "10000")
    metrics_detailed: bool = _env("METRICS_DETAILED", "true")
    metrics_cleanup_interval_s: float = _env("METRICS_CLEANUP_INTERVAL_S", "3600")
    metrics_timer_max_age_ms: int = _env("METRICS_TIMER_MAX_AGE_MS", str(HOUR_MS))

    def metrics_config(self) -> MetricsConfig:
        return MetricsConfig(
            retention_period_ms=self.metrics_retention_ms,
            max_histogram_samples=self.metrics_max_histogram_samples,
            detailed_metrics_enabled=self.metrics_detailed,
            cleanup_interval_s=self.metrics_cleanup_interval_s,
            timer_max_age_ms=self.metrics_timer_max_age_ms,
        )

settings = Settings()
