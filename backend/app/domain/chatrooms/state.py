"""Process-wide kick ledger and rate tracker, plus their background sweeper."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sized
from typing import Any, Dict, Optional

from app.domain.chatrooms.kick_ledger import KickLedger, MemoryKickLedger, RedisKickLedger
from app.domain.chatrooms.rate_tracker import MemoryRateTracker, RateTracker, RedisRateTracker
from app.obs import metrics as obs_metrics
from app.settings import settings

logger = logging.getLogger(__name__)

_kick_ledger: Optional[KickLedger] = None
_rate_tracker: Optional[RateTracker] = None
_backend: Optional[str] = None


def configure(backend: str | None = None) -> None:
	"""Install fresh stores for the given backend ("memory" or "redis")."""
	global _kick_ledger, _rate_tracker, _backend
	choice = (backend or settings.chat_state_backend).strip().lower()
	if choice == "redis":
		_kick_ledger = RedisKickLedger()
		_rate_tracker = RedisRateTracker()
	elif choice == "memory":
		_kick_ledger = MemoryKickLedger()
		_rate_tracker = MemoryRateTracker()
	else:
		raise ValueError(f"unsupported chat state backend: {backend}")
	_backend = choice
	logger.info("chat state backend configured: %s", choice)


def kick_ledger() -> KickLedger:
	if _kick_ledger is None:
		configure()
	assert _kick_ledger is not None
	return _kick_ledger


def rate_tracker() -> RateTracker:
	if _rate_tracker is None:
		configure()
	assert _rate_tracker is not None
	return _rate_tracker


async def sweep_once() -> int:
	kicks = await kick_ledger().sweep()
	windows = await rate_tracker().sweep()
	obs_metrics.chat_state_swept("kick_ledger", kicks)
	obs_metrics.chat_state_swept("rate_tracker", windows)
	return kicks + windows


async def run_state_sweeper(interval_s: float | None = None) -> None:
	"""Periodically evicts expired kicks and idle rate windows."""
	interval = max(1.0, float(interval_s if interval_s is not None else settings.chat_state_sweep_interval_seconds))
	while True:
		await asyncio.sleep(interval)
		try:
			removed = await sweep_once()
		except asyncio.CancelledError:
			raise
		except Exception:
			logger.exception("chat state sweeper iteration failed")
			continue
		if removed:
			logger.info("chat state sweeper removed %s stale entries", removed)


def describe() -> Dict[str, Any]:
	"""Backend name and entry counts; counts are None for shared backings."""
	ledger = kick_ledger()
	tracker = rate_tracker()
	return {
		"backend": _backend,
		"kick_records": len(ledger) if isinstance(ledger, Sized) else None,
		"rate_windows": len(tracker) if isinstance(tracker, Sized) else None,
	}


def reset_state() -> None:
	"""Test helper to start from empty in-memory stores."""
	configure("memory")
