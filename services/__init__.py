"""
Camada de serviços
Regras de negócio da agenda, cache com escopo de dono e isolamento do armazenamento local
"""
from .cache_service import CacheState, ScopedCache
from .collection_service import SessionCollection, SubjectCollection
from .context import AppContext, foreign_owner_sweep_job
from .date_service import DateClassifier, MonthCursor, add_months, format_long, month_grid, parse_calendar_date
from .document_store import DocumentStore
from .identity_service import IdentityProvider, Principal
from .mail_service import ConsoleMailer
from .schedule_service import Listing, ScheduleService
from .session_controller import SessionController, SessionState
from .storage_service import JsonFileStore, MemoryStore
from .sweeper import StorageSweeper, SweepReport, owner_key

__all__ = [
    'CacheState',
    'ScopedCache',
    'SessionCollection',
    'SubjectCollection',
    'AppContext',
    'foreign_owner_sweep_job',
    'DateClassifier',
    'MonthCursor',
    'add_months',
    'format_long',
    'month_grid',
    'parse_calendar_date',
    'DocumentStore',
    'IdentityProvider',
    'ConsoleMailer',
    'Principal',
    'Listing',
    'ScheduleService',
    'SessionController',
    'SessionState',
    'JsonFileStore',
    'MemoryStore',
    'StorageSweeper',
    'SweepReport',
    'owner_key'
]
