from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Omie ERP
    omie_base_url: str = "https://app.omie.com.br/api/v1"
    omie_app_key: str = ""
    omie_app_secret: str = ""
    omie_timeout_seconds: float = 60.0
    omie_max_retries: int = 3
    # Safety cap for paged listings (pages per job run)
    omie_max_pages: int = 200
    # Omie throttles per app_key; keep well below the documented limits
    omie_rate_per_sec: float = 4.0
    omie_max_per_min: int = 240

    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_role_key: str = ""

    # Shared secret for sync/cron triggers (X-Admin-Key header)
    admin_api_key: str = ""

    # Rows per upsert call
    sync_upsert_batch_size: int = 200

    # Server
    base_url: str = "http://localhost:8000"

    # CORS origins (comma-separated)
    cors_origins: str = "http://localhost:8081,http://localhost:19006"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
