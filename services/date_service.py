"""
Classificação de datas no fuso horário civil (Brasília)
Toda resolução de "hoje" passa por aqui, independente do fuso da máquina
"""
import calendar
import re
from collections import namedtuple
from datetime import date, datetime

import pytz

from utils.constants import CIVIL_TIMEZONE, MONTH_NAMES, WEEKDAY_NAMES
from utils.exceptions import InvalidDateFormat

DATE_RE = re.compile(r'^([0-9]{4})-([0-9]{2})-([0-9]{2})$')

PAST = 'past'
TODAY = 'today'
FUTURE = 'future'

MonthCursor = namedtuple('MonthCursor', ['year', 'month'])


def utc_clock():
    return datetime.now(pytz.utc)


def parse_calendar_date(value):
    """Converte 'AAAA-MM-DD' em date; qualquer outro formato é InvalidDateFormat"""
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise InvalidDateFormat(value)
    match = DATE_RE.match(value.strip())
    if not match:
        raise InvalidDateFormat(value)
    try:
        return date(*(int(part) for part in match.groups()))
    except ValueError:
        raise InvalidDateFormat(value)


def format_long(value):
    """Data por extenso em pt-BR, ex.: 'segunda-feira, 10 de março de 2025'"""
    day = parse_calendar_date(value)
    return f"{WEEKDAY_NAMES[day.weekday()]}, {day.day} de {MONTH_NAMES[day.month - 1]} de {day.year}"


def add_months(cursor, delta):
    """Avança (ou volta) o cursor do mês; a virada de ano sai da aritmética"""
    index = cursor.year * 12 + (cursor.month - 1) + delta
    return MonthCursor(index // 12, index % 12 + 1)


def month_grid(cursor):
    """Semanas do mês começando no domingo; dias fora do mês são None"""
    cal = calendar.Calendar(firstweekday=6)
    return [
        [day or None for day in week]
        for week in cal.monthdayscalendar(cursor.year, cursor.month)
    ]


class DateClassifier:
    """Responde passado/hoje/futuro a partir de um único instante resolvido no fuso civil"""

    def __init__(self, timezone_name=CIVIL_TIMEZONE, clock=None):
        self.timezone = pytz.timezone(timezone_name)
        self._clock = clock or utc_clock

    def now(self):
        instant = self._clock()
        if instant.tzinfo is None:
            instant = pytz.utc.localize(instant)
        return instant.astimezone(self.timezone)

    def today(self):
        return self.now().date()

    def current_month(self):
        today = self.today()
        return MonthCursor(today.year, today.month)

    def is_past(self, value, today=None):
        """Aula de hoje ainda não está concluída"""
        today = today or self.today()
        return parse_calendar_date(value) < today

    def is_today(self, day, month, year, today=None):
        today = today or self.today()
        return (today.year, today.month, today.day) == (year, month, day)

    def classify(self, value, today=None):
        today = today or self.today()
        day = parse_calendar_date(value)
        if day < today:
            return PAST
        if day == today:
            return TODAY
        return FUTURE

    def days_from_today(self, value, today=None):
        """Dias entre hoje e a data (negativo para o passado)"""
        today = today or self.today()
        return (parse_calendar_date(value) - today).days

    def annotate(self, rows, today=None):
        """Anota linhas com campo 'date' usando um único 'hoje'"""
        today = today or self.today()
        annotated = []
        for row in rows:
            offset = self.days_from_today(row['date'], today)
            annotated.append({
                **row,
                'classification': self.classify(row['date'], today),
                'concluded': offset < 0,
                'days_from_today': offset,
                'long_date': format_long(row['date'])
            })
        return annotated
