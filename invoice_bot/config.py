from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./invoice_bot.db"
    debug: bool = False
    log_level: str = "INFO"

    app_base_url: str = "http://localhost:8000"

    lark_app_id: str = ""
    lark_app_secret: str = ""
    lark_api_base: str = "https://open.feishu.cn/open-apis"

    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"
    gemini_api_base: str = "https://generativelanguage.googleapis.com/v1beta"

    default_issuer_1_name: str = ""
    default_issuer_1_company: str = ""
    default_issuer_1_address: str = ""
    default_issuer_1_postal_code: str = ""
    default_issuer_1_phone: str = ""
    default_issuer_1_email: str = ""
    default_issuer_1_bank_info: str = ""

    default_issuer_2_name: str = ""
    default_issuer_2_company: str = ""
    default_issuer_2_address: str = ""
    default_issuer_2_postal_code: str = ""
    default_issuer_2_phone: str = ""
    default_issuer_2_email: str = ""
    default_issuer_2_bank_info: str = ""

    selection_ttl_seconds: int = 300
    sweep_interval_seconds: float = 60.0
    sweeper_enabled: bool = True
    notified_ttl_seconds: int = 300

    dedup_backend: str = "memory"  # memory, redis
    dedup_capacity: int = 1000
    dedup_ttl_seconds: int = 86400
    redis_url: str = "redis://localhost:6379/0"

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
