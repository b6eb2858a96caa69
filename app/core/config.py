from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    APP_ENV: str = "local"
    APP_NAME: str = "field-service-dispatch"
    LOG_LEVEL: str = "INFO"

    JWT_SECRET: str = "change_me_jwt"
    JWT_TTL_MINUTES: int = 720

    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:3000"

    DATABASE_URL: str
    REDIS_URL: str

    S3_ENDPOINT: str
    S3_ACCESS_KEY: str
    S3_SECRET_KEY: str
    S3_BUCKET: str
    S3_REGION: str = "us-east-1"
    S3_USE_SSL: bool = False
    S3_PUBLIC_BASE_URL: str = ""
    MAX_PHOTO_MB: int = 10

    EMAIL_PROVIDER: str = "dummy"  # dummy | smtp | service
    EMAIL_SERVICE_URL: str = "http://email-service:8010"
    INTERNAL_SERVICE_TOKEN: str = "change_me_internal_service_token"
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM: str = ""
    SMTP_USE_TLS: bool = True
    SMTP_USE_SSL: bool = False

    GEOCODER_URL: str = "https://nominatim.openstreetmap.org/reverse"
    GEOCODER_USER_AGENT: str = "field-service-dispatch/1.0"
    GOOGLE_MAPS_API_KEY: str = ""
    DIRECTIONS_URL: str = "https://maps.googleapis.com/maps/api/directions/json"
    DISTANCE_MATRIX_URL: str = "https://maps.googleapis.com/maps/api/distancematrix/json"
    MATCH_RADIUS_KM: float = 70.0

    EXTERNAL_TIMEOUT_SECONDS: float = 10.0
    EXTERNAL_RETRY_ATTEMPTS: int = 3
    EXTERNAL_RETRY_BACKOFF_SECONDS: float = 0.5

    LIVE_CHANNEL_RETRY_SECONDS: float = 30.0

    UPI_MERCHANT_VPA: str = "merchant@upi"
    UPI_PAYEE_NAME: str = "Field Service"
    BILL_CURRENCY: str = "INR"

    CELERY_TASK_ALWAYS_EAGER: bool = False

    # Compose/infra vars that may exist in shared .env
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "dispatch"

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

settings = Settings()
