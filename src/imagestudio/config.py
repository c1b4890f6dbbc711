from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql+asyncpg://app:devpassword@db:5432/imagestudio"
    REDIS_URL: str = "redis://redis:6379/0"

    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_PRICE_BASIC: str = ""
    STRIPE_PRICE_PRO: str = ""

    CHECKOUT_SUCCESS_URL: str = (
        "https://sharepointimagestudio.com/checkout/success?session_id={CHECKOUT_SESSION_ID}"
    )
    CHECKOUT_CANCEL_URL: str = "https://sharepointimagestudio.com/pricing"
    PORTAL_RETURN_URL: str = "https://sharepointimagestudio.com/profile"

    IMAGE_API_URL: str = "https://generativelanguage.googleapis.com/v1beta"
    IMAGE_API_KEY: str = ""
    IMAGE_MODEL: str = "gemini-3-pro-image-preview"
    IMAGE_STORAGE_DIR: str = "/var/imagestudio/images"

    IDENTITY_TOKEN_SECRET: str = ""

    APP_ENV: str = "development"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
