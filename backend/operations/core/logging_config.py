"""
Logging configuration with GELF support for structured operations logging.
Extends standard Python logging to automatically include tenant, user,
workflow and interaction context.
"""

import logging
import json
import socket
from typing import Optional, Dict
from contextvars import ContextVar

# Context variables for operations data
current_tenant: ContextVar[Optional[str]] = ContextVar('current_tenant', default=None)
current_user: ContextVar[Optional[str]] = ContextVar('current_user', default=None)
current_workflow_id: ContextVar[Optional[str]] = ContextVar('current_workflow_id', default=None)
current_interaction_id: ContextVar[Optional[str]] = ContextVar('current_interaction_id', default=None)

_CONTEXT_VARS = {
    "tenant": current_tenant,
    "user": current_user,
    "workflow_id": current_workflow_id,
    "interaction_id": current_interaction_id,
}


class GELFFormatter(logging.Formatter):
    """Formatter that creates GELF-compatible JSON messages with operations context."""

    def __init__(self, container_name: Optional[str] = None, facility: str = "operations"):
        super().__init__()
        self.hostname = socket.gethostname()
        self.container_name = container_name
        self.facility = facility

    def format(self, record):
        gelf_message = {
            "version": "1.1",
            "host": self.hostname,
            "short_message": record.getMessage(),
            "timestamp": record.created,
            "level": self._level_to_gelf(record.levelno),
            "facility": self.facility,
            "_logger": record.name,
            "_filename": record.filename,
            "_line": record.lineno,
            "_thread": record.thread,
        }

        if self.container_name:
            gelf_message["container_name"] = self.container_name

        for name, value in get_operations_context().items():
            if value:
                gelf_message[f"_{name}"] = value

        # Extra fields passed with the log call
        for key, value in record.__dict__.items():
            if key.startswith(('workflow_', 'interaction_', 'event_', 'document_')):
                gelf_message[f"_{key}"] = str(value)

        if record.exc_info:
            gelf_message["_exception"] = self.formatException(record.exc_info)

        return json.dumps(gelf_message)

    def _level_to_gelf(self, level):
        """Convert Python log level to GELF level."""
        mapping = {
            logging.DEBUG: 7,
            logging.INFO: 6,
            logging.WARNING: 4,
            logging.ERROR: 3,
            logging.CRITICAL: 2
        }
        return mapping.get(level, 6)


class GELFHandler(logging.Handler):
    """Handler that sends GELF messages directly to Graylog via UDP."""

    def __init__(self, graylog_host: str, graylog_port: int = 12201, container_name: Optional[str] = None):
        super().__init__()
        self.graylog_host = graylog_host
        self.graylog_port = graylog_port
        self.setFormatter(GELFFormatter(container_name))

    def emit(self, record):
        try:
            gelf_json = self.format(record)
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            try:
                sock.sendto(gelf_json.encode('utf-8'), (self.graylog_host, self.graylog_port))
            finally:
                sock.close()
        except Exception:
            # Graylog being down must not break the application
            self.handleError(record)


def set_operations_context(
    tenant: Optional[str] = None,
    user: Optional[str] = None,
    workflow_id: Optional[str] = None,
    interaction_id: Optional[str] = None,
):
    """Set operations context for subsequent log messages."""
    if tenant is not None:
        current_tenant.set(tenant)
    if user is not None:
        current_user.set(user)
    if workflow_id is not None:
        current_workflow_id.set(workflow_id)
    if interaction_id is not None:
        current_interaction_id.set(interaction_id)


def clear_operations_context():
    """Clear all operations context."""
    for var in _CONTEXT_VARS.values():
        var.set(None)


def get_operations_context() -> Dict[str, Optional[str]]:
    """Get current operations context."""
    return {name: var.get() for name, var in _CONTEXT_VARS.items()}


def setup_logging(
    level: str = "INFO",
    graylog_host: Optional[str] = None,
    graylog_port: int = 12201,
    container_name: Optional[str] = None,
):
    """Install a console handler and, when a Graylog host is configured, the GELF handler."""
    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())

    if not any(isinstance(h, logging.StreamHandler) for h in root_logger.handlers):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
        root_logger.addHandler(console_handler)

    if graylog_host and not any(isinstance(h, GELFHandler) for h in root_logger.handlers):
        gelf_handler = GELFHandler(graylog_host, graylog_port, container_name)
        gelf_handler.setLevel(logging.DEBUG)
        root_logger.addHandler(gelf_handler)
