"""Order income sync job."""

from __future__ import annotations

from shopincome.jobs.sync.bootstrap import bootstrap_shop_config
from shopincome.jobs.sync.processor import SyncProcessor, SyncResult

__all__ = ["SyncProcessor", "SyncResult", "bootstrap_shop_config"]
