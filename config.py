import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        resend_api_key: str,
        email_from: str,
        email_timeout_secs: float,
        gemini_api_key: str,
        gemini_model: str,
        budget_alert_threshold: int,
        recurring_rate_limit: int,
        recurring_rate_period_secs: float,
        job_max_attempts: int,
        job_retry_base_delay_secs: float,
        report_workers: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.resend_api_key = resend_api_key
        self.email_from = email_from
        self.email_timeout_secs = email_timeout_secs
        self.gemini_api_key = gemini_api_key
        self.gemini_model = gemini_model
        self.budget_alert_threshold = budget_alert_threshold
        self.recurring_rate_limit = recurring_rate_limit
        self.recurring_rate_period_secs = recurring_rate_period_secs
        self.job_max_attempts = job_max_attempts
        self.job_retry_base_delay_secs = job_retry_base_delay_secs
        self.report_workers = report_workers


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINELYTICS_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("FINELYTICS_DATABASE_URL")
    if not database_url:
        default_db = _ensure_data_dir() / "finelytics.db"
        database_url = f"sqlite:///{default_db}"
    return Settings(
        database_url=database_url,
        timezone=os.getenv("FINELYTICS_TIMEZONE", "Asia/Kolkata"),
        resend_api_key=os.getenv("FINELYTICS_RESEND_API_KEY", ""),
        email_from=os.getenv(
            "FINELYTICS_EMAIL_FROM", "Finelytics <onboarding@resend.dev>"
        ),
        email_timeout_secs=float(os.getenv("FINELYTICS_EMAIL_TIMEOUT_SECS", "10")),
        gemini_api_key=os.getenv("FINELYTICS_GEMINI_API_KEY", ""),
        gemini_model=os.getenv("FINELYTICS_GEMINI_MODEL", "gemini-1.5-flash"),
        budget_alert_threshold=int(
            os.getenv("FINELYTICS_BUDGET_ALERT_THRESHOLD", "80")
        ),
        recurring_rate_limit=int(os.getenv("FINELYTICS_RECURRING_RATE_LIMIT", "10")),
        recurring_rate_period_secs=float(
            os.getenv("FINELYTICS_RECURRING_RATE_PERIOD_SECS", "60")
        ),
        job_max_attempts=int(os.getenv("FINELYTICS_JOB_MAX_ATTEMPTS", "2")),
        job_retry_base_delay_secs=float(
            os.getenv("FINELYTICS_JOB_RETRY_BASE_DELAY_SECS", "1")
        ),
        report_workers=int(os.getenv("FINELYTICS_REPORT_WORKERS", "4")),
    )
