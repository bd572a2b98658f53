"""Observability package bootstrap."""

from __future__ import annotations

from fastapi import FastAPI

from app.obs import logging as obs_logging
from app.obs import middleware
from app.settings import settings

_initialised = False


def init(app: FastAPI) -> None:
	"""Install JSON logging and request instrumentation once per process."""
	global _initialised
	if _initialised or not settings.obs_enabled:
		return
	logger = obs_logging.configure_logging()
	middleware.install(app)
	_initialised = True
	logger.info(
		"observability ready",
		extra={"log_level": settings.obs_log_level, "chat_state_backend": settings.chat_state_backend},
	)


__all__ = ["init"]
