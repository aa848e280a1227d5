from __future__ import annotations

import os
from functools import lru_cache
from typing import Any, Dict, Tuple

from dotenv import dotenv_values
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RemoteServerConfig(BaseModel):
    base_url: str = "http://localhost:5000"
    api_key: str = ""
    submit_timeout_seconds: float = 5.0
    # Status polls had no timeout at all; a hung request would block the next cycle.
    status_timeout_seconds: float = 10.0
    cancel_timeout_seconds: float = 5.0


class PollingConfig(BaseModel):
    interval_seconds: float = 5.0
    max_retries: int = 3


class HealthConfig(BaseModel):
    check_interval_seconds: float = 60.0
    timeout_seconds: float = 5.0
    max_consecutive_failures: int = 3


class AdminConfig(BaseModel):
    email: str = ""
    # Empty means "{remote.base_url}/notify-admin".
    notify_url: str = ""
    timeout_seconds: float = 5.0
    retries: int = 1


class NotificationsConfig(BaseModel):
    show_toasts: bool = True
    history_size: int = 50


class BindingConfig(BaseModel):
    refresh_interval_seconds: float = 1.0


class AppConfig(BaseModel):
    app_name: str = "Remote Task Monitor"
    log_level: str = "info"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
        env_nested_delimiter="__",
    )

    remote: RemoteServerConfig = Field(default_factory=RemoteServerConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    admin: AdminConfig = Field(default_factory=AdminConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)
    binding: BindingConfig = Field(default_factory=BindingConfig)
    app: AppConfig = Field(default_factory=AppConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ) -> Tuple[Any, ...]:
        """
        Support BOTH:
        - Nested env vars (e.g., REMOTE__BASE_URL) via env_nested_delimiter
        - Flat env vars shared with the web frontend (e.g., REMOTE_SERVER_URL)

        Priority: init > env > dotenv > legacy > secrets
        """

        def legacy_flat_env_source() -> Dict[str, Any]:
            env: Dict[str, str] = {}
            env_file = cls.model_config.get("env_file", ".env")
            if env_file and os.path.exists(env_file):
                # dotenv_values returns {key: value|None}
                file_vals = {k: (v or "") for k, v in dotenv_values(env_file).items()}
                env.update({k: v for k, v in file_vals.items() if k})

            # Environment variables override .env values
            env.update({k: v for k, v in os.environ.items()})

            def get_bool(var: str) -> Any:
                raw = env[var].strip().lower()
                if raw in ("true", "1", "yes", "y", "on"):
                    return True
                if raw in ("false", "0", "no", "n", "off"):
                    return False
                return None

            def get_float(var: str) -> Any:
                try:
                    return float(env[var].strip())
                except ValueError:
                    return None

            def get_int(var: str) -> Any:
                try:
                    return int(env[var].strip())
                except ValueError:
                    return None

            out: Dict[str, Any] = {}

            def set_path(path: Tuple[str, ...], value: Any) -> None:
                if value is None:
                    return
                d: Dict[str, Any] = out
                for key in path[:-1]:
                    d = d.setdefault(key, {})
                d[path[-1]] = value

            plain = {
                "REMOTE_SERVER_URL": ("remote", "base_url"),
                "REMOTE_API_KEY": ("remote", "api_key"),
                "ADMIN_EMAIL": ("admin", "email"),
                "ADMIN_NOTIFY_URL": ("admin", "notify_url"),
                "APP_NAME": ("app", "app_name"),
                "LOG_LEVEL": ("app", "log_level"),
            }
            floats = {
                "TASK_POLLING_INTERVAL": ("polling", "interval_seconds"),
                "TASK_STATUS_TIMEOUT": ("remote", "status_timeout_seconds"),
                "HEALTH_CHECK_INTERVAL": ("health", "check_interval_seconds"),
                "HEALTH_CHECK_TIMEOUT": ("health", "timeout_seconds"),
                "UI_REFRESH_INTERVAL": ("binding", "refresh_interval_seconds"),
            }
            ints = {
                "TASK_MAX_RETRIES": ("polling", "max_retries"),
                "HEALTH_MAX_CONSECUTIVE_FAILURES": ("health", "max_consecutive_failures"),
            }

            for var, path in plain.items():
                if env.get(var) is not None:
                    set_path(path, env[var])
            for var, path in floats.items():
                if env.get(var) is not None:
                    set_path(path, get_float(var))
            for var, path in ints.items():
                if env.get(var) is not None:
                    set_path(path, get_int(var))
            if env.get("SHOW_TOASTS") is not None:
                set_path(("notifications", "show_toasts"), get_bool("SHOW_TOASTS"))

            return out

        return (
            init_settings,
            env_settings,
            dotenv_settings,
            legacy_flat_env_source,
            file_secret_settings,
        )

    @property
    def admin_notify_url(self) -> str:
        if self.admin.notify_url:
            return self.admin.notify_url
        return f"{self.remote.base_url.rstrip('/')}/notify-admin"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
