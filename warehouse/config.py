from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # 声明.env里会出现的字段
    secret_key: str = "dev_secret"
    access_token_expire_minutes: int = 120

    database_url: str = "sqlite:///./warehouse.db"
    log_level: str = "INFO"

    # 报表按这个时区切日
    report_timezone: str = "Europe/Moscow"
    low_stock_threshold: int = 10
    forecast_days: int = 30

    # 启动时自动建管理员（两个都填才生效）
    admin_username: Optional[str] = None
    admin_password: Optional[str] = None

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
