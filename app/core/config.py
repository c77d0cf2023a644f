from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    """
    Application configuration settings.
    """
    model_config = SettingsConfigDict(env_prefix="RLM_TRACE_", env_file=".env", extra="ignore")

    # Service Info
    service_name: str = "rlm-trace-service"
    environment: str = "local"
    log_level: str = "INFO"
    
    # API 
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    
    # Stream transport
    stream_connect_timeout_seconds: float = 10.0
    stream_read_timeout_seconds: Optional[float] = None
    total_timeout_seconds: Optional[float] = None

    # Trace defaults
    default_max_iterations: int = 10
    default_max_depth: int = 3
    run_timeout_minutes: int = 30
    trace_sink: str = "console"  # console | json | none
    trace_debug: bool = False

settings = Settings()
