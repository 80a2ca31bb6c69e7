"""
Constantes do sistema de agenda do laboratório
"""

# --- Fuso horário civil ---
CIVIL_TIMEZONE = 'America/Sao_Paulo'

# --- Horários fixos das aulas ---
TIME_SLOTS = [
    {'id': 1, 'value': '19:20-20:50', 'start': '19:20', 'end': '20:50', 'label': '19:20 às 20:50'},
    {'id': 2, 'value': '21:10-22:40', 'start': '21:10', 'end': '22:40', 'label': '21:10 às 22:40'},
]
TIME_SLOT_VALUES = tuple(slot['value'] for slot in TIME_SLOTS)
TIME_SLOT_ORDER = {value: index for index, value in enumerate(TIME_SLOT_VALUES)}

# --- Coleções do armazenamento de documentos ---
SUBJECTS = 'subjects'
SESSIONS = 'sessions'
ENTITY_TYPES = (SUBJECTS, SESSIONS)

DEFAULT_SESSION_STATUS = 'agendada'

# --- Cores das disciplinas ---
SUBJECT_COLORS = [
    '#1976D2', '#7B1FA2', '#F57C00', '#C2185B', '#2E7D32',
    '#00838F', '#5D4037', '#D32F2F', '#455A64', '#AFB42B',
]
MISSING_SUBJECT = {'name': 'Disciplina não encontrada', 'color_tag': '#6c757d'}

# --- Nomes dos campos nos formulários (erros de validação) ---
FIELD_NAME = 'nome'
FIELD_INSTRUCTOR = 'professor'
FIELD_COLOR = 'cor'
FIELD_DATE = 'data'
FIELD_SUBJECT = 'disciplina'
FIELD_TIME_SLOT = 'horario'
FIELD_EMAIL = 'email'
FIELD_PASSWORD = 'senha'

# --- Namespace do armazenamento local ---
STORAGE_TAG = 'cms_'
GLOBAL_OWNER_SEGMENT = 'global'
ACTIVE_OWNER_KEY = 'cms.active_owner'
AUTH_OWNER_KEY = 'cms.auth_owner'
PERSISTENT_STORE_FILENAME = 'cms_storage.json'
LOCAL_DATABASE_PREFIXES = ('cms', 'firestore')

# --- Relatórios ---
UPCOMING_WINDOW_DAYS = 7

# --- Exibição de datas (pt-BR) ---
WEEKDAY_NAMES = [
    'segunda-feira', 'terça-feira', 'quarta-feira', 'quinta-feira',
    'sexta-feira', 'sábado', 'domingo',
]
MONTH_NAMES = [
    'janeiro', 'fevereiro', 'março', 'abril', 'maio', 'junho',
    'julho', 'agosto', 'setembro', 'outubro', 'novembro', 'dezembro',
]
WEEKDAY_SHORT_NAMES = ['Dom', 'Seg', 'Ter', 'Qua', 'Qui', 'Sex', 'Sáb']

# --- Autenticação ---
MIN_PASSWORD_LENGTH = 6
PASSWORD_RESET_TTL_MINUTES = 60
