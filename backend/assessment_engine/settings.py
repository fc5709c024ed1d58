from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	# Database
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	# Auth configuration (tokens are issued by the platform; we only read the subject)
	jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
	access_token_expire_minutes: int = Field(default=120, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")

	# Language used for prompts and level names when the caller doesn't ask for one
	default_language: str = Field(default="en", validation_alias="DEFAULT_LANGUAGE")

	# Assessment defaults applied when a stored assessment leaves the field empty
	exercise_passing_score: float = Field(default=60, validation_alias="EXERCISE_PASSING_SCORE")
	exam_passing_score: float = Field(default=70, validation_alias="EXAM_PASSING_SCORE")
	exam_max_attempts: int = Field(default=3, validation_alias="EXAM_MAX_ATTEMPTS")
	# Exercises have never been capped; flip this to honour their max_attempts column
	enforce_exercise_max_attempts: bool = Field(default=False, validation_alias="ENFORCE_EXERCISE_MAX_ATTEMPTS")

	# Countdown tick length in seconds
	countdown_tick_seconds: float = Field(default=1.0, validation_alias="COUNTDOWN_TICK_SECONDS")
	# Live sessions older than this are dropped from memory by the housekeeping loop
	session_retention_seconds: int = Field(default=6 * 60 * 60, validation_alias="SESSION_RETENTION_SECONDS")

	# Logging
	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
	log_json: bool = Field(default=False, validation_alias="LOG_JSON")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
