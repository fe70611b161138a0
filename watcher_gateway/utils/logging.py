"""Structured logging setup for the gateway and watcher resolvers."""

import json
import logging
import sys


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        data = {
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }
        # Structured fields emitted by the gateway and the resolver audit log
        for attr in [
            "op_name",
            "query",
            "variables",
            "latest_indexed_block_number",
            "url_path",
            "api_key",
            "origin",
            "endpoint",
            "prefix",
            "field",
            "operation",
            "latency_ms",
            "error",
            "error_code",
        ]:
            if hasattr(record, attr):
                data[attr] = getattr(record, attr)
        if record.exc_info and record.exc_info[1] is not None and "error" not in data:
            data["error"] = repr(record.exc_info[1])
        return json.dumps(data, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(level.upper())
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    root.handlers = [handler]
