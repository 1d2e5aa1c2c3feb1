# config/settings.py

from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# the OpenAI SDK reads OPENAI_API_KEY straight from the environment
load_dotenv()


class ModulesConfig(BaseModel):
    backend_name: str = "OpenAIAssistantBackend"


class OpenAIConfig(BaseModel):
    """Config for the OpenAI Assistants backend."""

    api_key: Optional[str] = Field(None, repr=False)
    assistant_id: Optional[str] = None
    request_timeout_seconds: float = 60.0
    max_retries: int = 2


class AdmissionConfig(BaseModel):
    """How long a new turn waits for the session's previous run."""

    max_retries: int = 10
    retry_delay_seconds: float = 1.0  # fixed delay between polls, no backoff


class WaitingConfig(BaseModel):
    """Status text sent when the assistant is slow to produce its first token."""

    message: Optional[str] = None
    timeout_seconds: float = 2.0


class ToolsConfig(BaseModel):
    functions_dir: str = "functions"
    session_arg_key: str = "sessionId"
    ami_url: str = "http://127.0.0.1:6006"
    timeout_seconds: float = 10.0


class StreamingConfig(BaseModel):
    cancel_on_disconnect: bool = False


class SessionsConfig(BaseModel):
    idle_ttl_seconds: Optional[float] = None


class LoggingConfig(BaseModel):
    """Basic logging config."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    json_logging: bool = True


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 6004


class Settings(BaseSettings):
    """Top-level app settings loaded from environment / .env."""

    env: Literal["dev", "staging", "prod"] = "dev"

    modules: ModulesConfig = ModulesConfig()
    openai: OpenAIConfig = OpenAIConfig()
    admission: AdmissionConfig = AdmissionConfig()
    waiting: WaitingConfig = WaitingConfig()
    tools: ToolsConfig = ToolsConfig()
    streaming: StreamingConfig = StreamingConfig()
    sessions: SessionsConfig = SessionsConfig()
    logging: LoggingConfig = LoggingConfig()
    server: ServerConfig = ServerConfig()

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="APP_",              # all vars start with APP_
        env_nested_delimiter="__",      # APP_WAITING__MESSAGE, etc.
        case_sensitive=False,
        extra="ignore",
    )


# Single global instance you import everywhere
settings = Settings()
