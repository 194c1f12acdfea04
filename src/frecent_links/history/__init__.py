"""Frecency-ranked browsing history with change notification."""

from frecent_links.history.clock import VisitClock
from frecent_links.history.frecency import FrecencyEngine
from frecent_links.history.index import LinkIndex
from frecent_links.history.models import LinkEntry, Transition, UrlRecord, Visit, VisitInput
from frecent_links.history.notifier import ChangeNotifier
from frecent_links.history.service import HistoryService
from frecent_links.history.store import VisitStore

__all__ = [
    "ChangeNotifier",
    "FrecencyEngine",
    "HistoryService",
    "LinkEntry",
    "LinkIndex",
    "Transition",
    "UrlRecord",
    "Visit",
    "VisitClock",
    "VisitInput",
    "VisitStore",
]
