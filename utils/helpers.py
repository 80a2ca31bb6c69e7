"""
Funções utilitárias auxiliares
"""
import random
import re
from datetime import datetime, timezone

from .constants import SUBJECT_COLORS, TIME_SLOT_ORDER

HEX_COLOR_RE = re.compile(r'^#[0-9A-Fa-f]{6}$')


def utcnow():
    return datetime.now(timezone.utc)


def sort_subjects(subjects):
    """Ordena disciplinas pelo nome (sem diferenciar maiúsculas)"""
    return sorted(subjects, key=lambda s: (s.get('name') or '').casefold())


def sort_sessions(sessions, reverse=False):
    """Ordena aulas por data e depois pelo horário"""
    return sorted(
        sessions,
        key=lambda s: (s.get('date') or '', TIME_SLOT_ORDER.get(s.get('time_slot'), 99)),
        reverse=reverse
    )


def random_color(rng=random):
    return rng.choice(SUBJECT_COLORS)


def is_hex_color(value):
    return bool(value) and bool(HEX_COLOR_RE.match(value))


def clean_text(value):
    """Remove espaços das extremidades; None continua None"""
    if value is None:
        return None
    return str(value).strip()
