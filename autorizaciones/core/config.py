# autorizaciones/core/config.py

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import List


class Settings(BaseSettings):
    """
    Settings for the application, loaded from a .env file.
    """
    # --- Project Info ---
    PROJECT_NAME: str = "ERP Autorizaciones API"
    API_V1_STR: str = "/api/v1"
    VERSION: str = "1.0.0"

    # --- Frontend / CORS ---
    FRONTEND_URL: str = Field(default="http://localhost:5173", description="Frontend application URL")
    ALLOWED_ORIGINS: List[str] = Field(default_factory=list)

    # --- Database ---
    DATABASE_URL: str = Field(default="sqlite:///./autorizaciones.db", description="Database URL for the authorization store")
    DB_ECHO: bool = False

    # --- Logging ---
    LOG_LEVEL: str = "INFO"

    # --- Escalamiento ---
    ESCALATION_INTERVAL_SECONDS: int = Field(default=60 * 60, description="Intervalo del escaneo automático; 0 lo desactiva")
    ESCALATION_RISK_WINDOW_HOURS: int = 6

    # --- Métricas ---
    ACTIVE_APPROVER_WINDOW_DAYS: int = 30
    RECENT_WORKFLOWS_LIMIT: int = 10

    # Pydantic V2 necesita esta configuración para leer desde .env
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding='utf-8', extra='ignore')

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Configurar ALLOWED_ORIGINS basado en FRONTEND_URL si no se especifica explícitamente
        if not self.ALLOWED_ORIGINS:
            self.ALLOWED_ORIGINS = [self.FRONTEND_URL]


# Se crea una única instancia que será usada en toda la aplicación
settings = Settings()
