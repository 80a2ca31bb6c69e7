"""
Serviço da agenda: disciplinas, aulas, calendário e relatórios do dono ativo
Validações de formulário, exclusão em cascata e invalidação do cache ficam aqui;
o acesso aos dados passa sempre pelo cache com escopo de dono.
"""
import json
import logging
import random
from dataclasses import dataclass

from utils.constants import (
    FIELD_COLOR, FIELD_DATE, FIELD_INSTRUCTOR, FIELD_NAME, FIELD_SUBJECT, FIELD_TIME_SLOT,
    MISSING_SUBJECT, MONTH_NAMES, SESSIONS, SUBJECTS, TIME_SLOT_VALUES,
    UPCOMING_WINDOW_DAYS, WEEKDAY_SHORT_NAMES
)
from utils.exceptions import (
    CascadeDeleteFailed, InvalidDateFormat, NotFound, RemoteUnavailable, StaleResult, ValidationFailed
)
from utils.helpers import clean_text, is_hex_color, random_color, sort_sessions
from .date_service import MonthCursor, add_months, format_long, month_grid, parse_calendar_date
from .sweeper import owner_key

logger = logging.getLogger(__name__)

SUBJECT_FIELDS = ('name', 'instructor', 'color_tag', 'notes')
SESSION_FIELDS = ('date', 'subject_id', 'time_slot', 'notes')
CALENDAR_CURSOR = 'calendar_cursor'


@dataclass
class Listing:
    rows: list
    stale: bool = False

    def to_dict(self, key):
        return {'status': 'success', key: self.rows, 'stale': self.stale}


class ScheduleService:

    def __init__(self, controller, cache, subjects, sessions, classifier, persistent, volatile, rng=None):
        self.controller = controller
        self.cache = cache
        self.collections = {SUBJECTS: subjects, SESSIONS: sessions}
        self.classifier = classifier
        self.persistent = persistent
        self.volatile = volatile
        self.rng = rng or random.Random()

    # --- Leitura ---
    def _fetch(self, owner_id, entity_type):
        rows = self.collections[entity_type].list(owner_id)
        if self.controller.current_owner == owner_id:
            self._write_snapshot(owner_id, entity_type, rows)
        return rows

    def _load(self, owner_id, entity_type, force_refresh=False):
        if force_refresh:
            self.cache.invalidate(owner_id, entity_type)
        rows = self.cache.fetch_if_absent(owner_id, entity_type, lambda: self._fetch(owner_id, entity_type))
        if self.controller.current_owner != owner_id:
            raise StaleResult(owner_id)
        return rows

    def _write_snapshot(self, owner_id, entity_type, rows):
        try:
            self.persistent.set(owner_key(owner_id, entity_type), json.dumps(rows))
        except Exception as e:
            logger.warning(f"Erro ao salvar cópia local de {entity_type}: {e}")

    def _read_snapshot(self, owner_id, entity_type):
        try:
            raw = self.persistent.get(owner_key(owner_id, entity_type))
            return json.loads(raw) if raw else None
        except Exception as e:
            logger.error(f"Erro no fallback local de {entity_type}: {e}")
            return None

    def listing(self, entity_type, force_refresh=False):
        """Listagem do dono ativo; com o serviço fora do ar usa a cópia local marcada como desatualizada"""
        owner_id = self.controller.require_owner()
        try:
            return Listing(self._load(owner_id, entity_type, force_refresh))
        except RemoteUnavailable:
            fallback = self._read_snapshot(owner_id, entity_type)
            if fallback is None:
                raise
            logger.warning(f"Usando cópia local de {entity_type} como fallback")
            return Listing(fallback, stale=True)

    def list_subjects(self, force_refresh=False):
        return self.listing(SUBJECTS, force_refresh)

    def list_sessions(self, force_refresh=False):
        return self.listing(SESSIONS, force_refresh)

    def refresh_all(self):
        return {
            SUBJECTS: self.list_subjects(force_refresh=True),
            SESSIONS: self.list_sessions(force_refresh=True)
        }

    def _find(self, owner_id, entity_type, document_id):
        for row in self._load(owner_id, entity_type):
            if row['id'] == document_id:
                return row
        label = 'Disciplina' if entity_type == SUBJECTS else 'Aula'
        raise NotFound(f"{label} não encontrada")

    def _mutate(self, owner_id, entity_type, operation):
        # invalidação antes de devolver o controle, mesmo em caso de erro
        try:
            return operation()
        finally:
            self.cache.invalidate(owner_id, entity_type)

    # --- Disciplinas ---
    def _validate_subject(self, owner_id, data, editing_id=None):
        name = clean_text(data.get('name'))
        if not name:
            raise ValidationFailed(FIELD_NAME, "Nome da disciplina é obrigatório")

        for subject in self._load(owner_id, SUBJECTS):
            if editing_id and subject['id'] == editing_id:
                continue
            if subject['name'].casefold() == name.casefold():
                raise ValidationFailed(FIELD_NAME, "Já existe uma disciplina com este nome")

        instructor = clean_text(data.get('instructor'))
        if not instructor:
            raise ValidationFailed(FIELD_INSTRUCTOR, "Nome do professor é obrigatório")

        color_tag = clean_text(data.get('color_tag'))
        if not is_hex_color(color_tag):
            raise ValidationFailed(FIELD_COLOR, "Cor inválida (use o formato #RRGGBB)")

        return {
            'name': name,
            'instructor': instructor,
            'color_tag': color_tag.upper(),
            'notes': clean_text(data.get('notes')) or ''
        }

    def create_subject(self, fields):
        owner_id = self.controller.require_owner()
        data = {name: fields.get(name) for name in SUBJECT_FIELDS}
        if not data.get('color_tag'):
            data['color_tag'] = random_color(self.rng)
        clean = self._validate_subject(owner_id, data)
        created = self._mutate(owner_id, SUBJECTS, lambda: self.collections[SUBJECTS].create(owner_id, clean))
        logger.info(f"Disciplina salva com sucesso: {created['name']}")
        return created

    def update_subject(self, subject_id, fields):
        owner_id = self.controller.require_owner()
        existing = self._find(owner_id, SUBJECTS, subject_id)
        merged = {name: fields.get(name, existing.get(name)) for name in SUBJECT_FIELDS}
        clean = self._validate_subject(owner_id, merged, editing_id=subject_id)
        return self._mutate(owner_id, SUBJECTS, lambda: self.collections[SUBJECTS].update(subject_id, clean))

    def linked_sessions(self, subject_id):
        owner_id = self.controller.require_owner()
        return [row for row in self._load(owner_id, SESSIONS) if row['subject_id'] == subject_id]

    def delete_subject(self, subject_id):
        """Exclui as aulas vinculadas e depois a disciplina; falha parcial mantém a disciplina"""
        owner_id = self.controller.require_owner()
        self._find(owner_id, SUBJECTS, subject_id)
        linked = self.linked_sessions(subject_id)

        failed = []

        def delete_linked():
            for session in linked:
                try:
                    self.collections[SESSIONS].delete(session['id'])
                except RemoteUnavailable as e:
                    logger.warning(f"Erro ao excluir aula {session['id']} da disciplina {subject_id}: {e}")
                    failed.append(session['id'])

        self._mutate(owner_id, SESSIONS, delete_linked)
        if failed:
            raise CascadeDeleteFailed(subject_id, failed)

        self._mutate(owner_id, SUBJECTS, lambda: self.collections[SUBJECTS].delete(subject_id))
        logger.info(f"Disciplina {subject_id} excluída com {len(linked)} aula(s) vinculada(s)")
        return {'deleted_sessions': len(linked)}

    # --- Aulas ---
    def _validate_session(self, owner_id, data, editing_id=None):
        raw_date = clean_text(data.get('date'))
        if not raw_date:
            raise ValidationFailed(FIELD_DATE, "Data da aula é obrigatória")
        try:
            session_date = parse_calendar_date(raw_date).isoformat()
        except InvalidDateFormat:
            raise ValidationFailed(FIELD_DATE, "Data inválida (use AAAA-MM-DD)")

        subject_id = clean_text(data.get('subject_id'))
        if not subject_id:
            raise ValidationFailed(FIELD_SUBJECT, "Disciplina é obrigatória")
        if not any(s['id'] == subject_id for s in self._load(owner_id, SUBJECTS)):
            raise ValidationFailed(FIELD_SUBJECT, "Disciplina selecionada não existe")

        time_slot = clean_text(data.get('time_slot'))
        if not time_slot:
            raise ValidationFailed(FIELD_TIME_SLOT, "Horário é obrigatório")
        if time_slot not in TIME_SLOT_VALUES:
            raise ValidationFailed(FIELD_TIME_SLOT, "Horário inválido")

        for session in self._load(owner_id, SESSIONS):
            if editing_id and session['id'] == editing_id:
                continue
            if session['date'] == session_date and session['time_slot'] == time_slot:
                raise ValidationFailed(FIELD_TIME_SLOT, "Já existe uma aula nesta data e horário")

        return {
            'date': session_date,
            'subject_id': subject_id,
            'time_slot': time_slot,
            'notes': clean_text(data.get('notes')) or ''
        }

    def create_session(self, fields):
        owner_id = self.controller.require_owner()
        clean = self._validate_session(owner_id, {name: fields.get(name) for name in SESSION_FIELDS})
        created = self._mutate(owner_id, SESSIONS, lambda: self.collections[SESSIONS].create(owner_id, clean))
        logger.info(f"Aula salva com sucesso: {created['date']} {created['time_slot']}")
        return created

    def update_session(self, session_id, fields):
        owner_id = self.controller.require_owner()
        existing = self._find(owner_id, SESSIONS, session_id)
        merged = {name: fields.get(name, existing.get(name)) for name in SESSION_FIELDS}
        clean = self._validate_session(owner_id, merged, editing_id=session_id)
        return self._mutate(owner_id, SESSIONS, lambda: self.collections[SESSIONS].update(session_id, clean))

    def delete_session(self, session_id):
        owner_id = self.controller.require_owner()
        self._find(owner_id, SESSIONS, session_id)
        return self._mutate(owner_id, SESSIONS, lambda: self.collections[SESSIONS].delete(session_id))

    # --- Relatórios ---
    def build_report(self):
        """Próximas aulas (hoje incluído) e aulas concluídas, com a disciplina de cada uma"""
        sessions = self.list_sessions()
        subjects = self.list_subjects()
        today = self.classifier.today()
        subjects_by_id = {s['id']: s for s in subjects.rows}

        upcoming, completed = [], []
        for row in sessions.rows:
            offset = self.classifier.days_from_today(row['date'], today)
            enriched = {
                **row,
                'subject': subjects_by_id.get(row['subject_id'], MISSING_SUBJECT),
                'long_date': format_long(row['date'])
            }
            if offset >= 0:
                enriched.update(days_remaining=offset, is_today=offset == 0, is_tomorrow=offset == 1)
                upcoming.append(enriched)
            else:
                enriched['days_elapsed'] = -offset
                completed.append(enriched)

        upcoming = sort_sessions(upcoming)
        completed = sort_sessions(completed, reverse=True)
        return {
            'today': today.isoformat(),
            'upcoming': upcoming,
            'completed': completed,
            'next_session': upcoming[0] if upcoming else None,
            'stats': {
                'upcoming': len(upcoming),
                'completed': len(completed),
                'next_7_days': sum(1 for s in upcoming if s['days_remaining'] <= UPCOMING_WINDOW_DAYS)
            },
            'stale': sessions.stale or subjects.stale
        }

    # --- Calendário ---
    def calendar_cursor(self):
        """Mês exibido no calendário, guardado no armazenamento volátil do dono"""
        owner_id = self.controller.require_owner()
        raw = self.volatile.get(owner_key(owner_id, CALENDAR_CURSOR))
        if raw:
            year, month = (int(part) for part in raw.split('-'))
            return MonthCursor(year, month)
        return self.classifier.current_month()

    def _save_cursor(self, owner_id, cursor):
        self.volatile.set(owner_key(owner_id, CALENDAR_CURSOR), f"{cursor.year:04d}-{cursor.month:02d}")

    def navigate(self, step=0, cursor=None):
        owner_id = self.controller.require_owner()
        cursor = add_months(cursor or self.calendar_cursor(), step)
        self._save_cursor(owner_id, cursor)
        return self.month_view(cursor)

    def month_view(self, cursor):
        sessions = self.list_sessions()
        subjects = self.list_subjects()
        today = self.classifier.today()
        subjects_by_id = {s['id']: s for s in subjects.rows}

        prefix = f"{cursor.year:04d}-{cursor.month:02d}-"
        month_sessions = [row for row in sessions.rows if row['date'].startswith(prefix)]
        by_day = {}
        for row in self.classifier.annotate(sort_sessions(month_sessions), today):
            row['subject'] = subjects_by_id.get(row['subject_id'], MISSING_SUBJECT)
            by_day.setdefault(int(row['date'][-2:]), []).append(row)

        weeks = []
        for week in month_grid(cursor):
            weeks.append([
                None if day is None else {
                    'day': day,
                    'date': f"{prefix}{day:02d}",
                    'is_today': self.classifier.is_today(day, cursor.month, cursor.year, today),
                    'sessions': by_day.get(day, [])
                }
                for day in week
            ])

        previous, following = add_months(cursor, -1), add_months(cursor, 1)
        return {
            'year': cursor.year,
            'month': cursor.month,
            'month_name': MONTH_NAMES[cursor.month - 1].capitalize(),
            'weekdays': WEEKDAY_SHORT_NAMES,
            'weeks': weeks,
            'session_count': len(month_sessions),
            'previous': {'year': previous.year, 'month': previous.month},
            'next': {'year': following.year, 'month': following.month},
            'today': today.isoformat(),
            'stale': sessions.stale or subjects.stale
        }
