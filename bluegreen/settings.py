"""Centralized settings for the blue/green orchestrator.

Uses pydantic-settings to load from environment variables (prefixed
BLUEGREEN_) with defaults matching the layout of a standard checkout.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Orchestrator settings loaded from environment variables."""

    # --- Slots ---
    host: str = "localhost"
    blue_port: int = 5000
    green_port: int = 5001

    # --- Files ---
    state_file: str = ".deployment-state.json"
    backend_dir: str = "backend"
    frontend_dir: str = "frontend"

    # --- Reverse proxy ---
    proxy_config: str = "nginx/nginx.conf"
    proxy_docker_config: str = "nginx/nginx.docker.conf"
    proxy_container: str = "blue-green-nginx"
    routing_variable: str = "active_environment"
    proxy_restart_command: str = "systemctl restart nginx"
    proxy_command_timeout: float = 5.0

    # --- Build / sync collaborators ---
    build_command: str = "npm run build"
    install_command: str = "npm install"
    sync_command: str = "node database/migrations/migrate-blue-to-green.js {source} {target}"
    server_script: str = "backend/shared/server.js"

    # --- Health gating ---
    probe_timeout_ms: int = 3000
    health_check_interval: float = 5.0
    health_check_timeout: float = 30.0
    warmup_seconds: float = 5.0

    # --- Rollback monitor ---
    monitor_interval: float = 30.0
    monitor_probe_timeout_ms: int = 5000
    error_rate_threshold: float = 0.05
    max_consecutive_failures: int = 3
    slow_response_ms: float = 2000.0

    model_config = {
        "env_prefix": "BLUEGREEN_",
        "env_file": ".env",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton."""
    return Settings()
