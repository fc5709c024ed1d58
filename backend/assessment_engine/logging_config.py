import json
import logging
import logging.config
import time

from .settings import settings


class JSONFormatter(logging.Formatter):
	"""Single-line JSON log records for log shipping."""

	def format(self, record: logging.LogRecord) -> str:
		entry = {
			"level": record.levelname,
			"ts": round(time.time(), 3),
			"logger": record.name,
			"msg": record.getMessage(),
		}
		if record.exc_info:
			entry["exc_info"] = self.formatException(record.exc_info)
		return json.dumps(entry, ensure_ascii=False)


def setup_logging(level: str | None = None, json_output: bool | None = None) -> None:
	level = (level or settings.log_level).upper()
	json_output = settings.log_json if json_output is None else json_output
	logging.config.dictConfig({
		"version": 1,
		"disable_existing_loggers": False,
		"formatters": {
			"json": {"()": JSONFormatter},
			"simple": {
				"format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
				"datefmt": "%Y-%m-%d %H:%M:%S",
			},
		},
		"handlers": {
			"console": {
				"class": "logging.StreamHandler",
				"formatter": "json" if json_output else "simple",
				"stream": "ext://sys.stdout",
			},
		},
		"loggers": {
			"assessment_engine": {"level": level, "handlers": ["console"], "propagate": False},
			"uvicorn": {"level": "INFO", "handlers": ["console"], "propagate": False},
		},
		"root": {"level": "WARNING", "handlers": ["console"]},
	})
