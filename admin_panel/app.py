import os
import socket

import httpx
import pandas as pd
import streamlit as st
from sqlalchemy import create_engine, text
from sqlalchemy.exc import ProgrammingError
from dotenv import load_dotenv

# Загружаем переменные окружения из .env файла
load_dotenv()

# --- Функции ---
def resolve_app_base_url() -> str:
    """Определяет базовый URL для подключения к приложению с фоллбеком."""
    url = os.getenv("ADMIN_APP_URL", "").strip()
    if url:
        return url

    # попытка резолва docker-сервиса "app"
    try:
        socket.gethostbyname("app")
        return "http://app"
    except OSError:
        pass

    # локальный фоллбек (когда панель запускают вне Docker)
    return "http://localhost:8000"

# --- Настройки ---
APP_BASE = resolve_app_base_url()
DB_URL = os.getenv("ADMIN_DB_URL")
SYNC_SECRET = os.getenv("ADMIN_SYNC_SECRET", "")
POLL_SECONDS = int(os.getenv("ADMIN_POLL_SECONDS", "5"))
PAGE_SIZE = int(os.getenv("ADMIN_PAGE_SIZE", "500"))

# Fallback для старых переменных окружения
if not DB_URL:
    DB_USER = os.getenv("POSTGRES_USER")
    DB_PASSWORD = os.getenv("POSTGRES_PASSWORD")
    DB_SERVER = os.getenv("POSTGRES_SERVER", "db")
    DB_PORT = os.getenv("POSTGRES_PORT", "5432")
    DB_NAME = os.getenv("POSTGRES_DB")
    DB_URL = f"postgresql://{DB_USER}:{DB_PASSWORD}@{DB_SERVER}:{DB_PORT}/{DB_NAME}"

engine = create_engine(DB_URL)


def call_outbox_endpoint(path: str):
    """POST на внутренний эндпоинт outbox с секретом административной системы."""
    try:
        url = APP_BASE.rstrip("/") + path
        headers = {"Content-Type": "application/json", "x-admin-sync-secret": SYNC_SECRET}

        with httpx.Client() as client:
            response = client.post(url, headers=headers, timeout=120)
            response.raise_for_status()
            st.success(f"Готово! Статус: {response.status_code}")
            st.json(response.json())
    except httpx.HTTPStatusError as e:
        st.error(f"Ошибка вызова {path}: {e.response.status_code} - {e.response.text}")
    except httpx.HTTPError as e:
        st.error(f"Приложение недоступно: {e}")


def fetch_health_safe():
    """Сводка outbox_health: dict, 'TABLE_NOT_EXISTS' или 'ERROR: ...'."""
    try:
        with engine.connect() as conn:
            row = conn.execute(text("SELECT * FROM outbox_health WHERE id = 1")).mappings().first()
        return dict(row) if row else {}
    except ProgrammingError as e:
        if "outbox_health" in str(e) and ("does not exist" in str(e) or "UndefinedTable" in str(e)):
            return "TABLE_NOT_EXISTS"
        return f"ERROR: {e}"
    except Exception as e:
        return f"ERROR: {e}"


def fetch_events_safe(event_type: str, only_failed: bool, limit: int):
    try:
        where = ["TRUE"]
        sql_params = {"limit": limit}
        if event_type and event_type != "Все":
            where.append("event_type = :event_type")
            sql_params["event_type"] = event_type
        if only_failed:
            where.append("attempts > 0")

        sql = text(
            f"""
            SELECT id, event_type, status, attempts, last_error,
                   next_retry_at, locked_at, created_at, updated_at, payload
            FROM outbox_events
            WHERE {' AND '.join(where)}
            ORDER BY created_at ASC
            LIMIT :limit
            """
        )
        return pd.read_sql(sql, engine, params=sql_params)
    except ProgrammingError as e:
        if "outbox_events" in str(e):
            return "TABLE_NOT_EXISTS"
        return f"ERROR: {e}"
    except Exception as e:
        return f"ERROR: {e}"


@st.cache_data(ttl=POLL_SECONDS)
def load_events(event_type: str = "Все", only_failed: bool = False, limit: int = None):
    return fetch_events_safe(event_type, only_failed, limit or PAGE_SIZE)


# --- Интерфейс ---
st.set_page_config(page_title="Outbox - Studio Admin Sync", layout="wide")

st.title("📮 Очередь синхронизации с админкой")
st.caption(f"DB: {DB_URL.split('@')[1] if '@' in DB_URL else 'N/A'} | App: {APP_BASE}")

# --- Сводка ---
health = fetch_health_safe()
if health == "TABLE_NOT_EXISTS":
    st.warning("Таблицы outbox отсутствуют: примените миграции (`python prestart.py`).")
elif isinstance(health, str):
    st.error(f"Ошибка при получении статуса: {health[6:]}")
elif not health:
    st.info("Статус ещё не рассчитывался.")
else:
    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Статус", health["status"])
    col2.metric("В очереди", health["pending_count"])
    col3.metric("Старейшее событие", str(health["oldest_pending_at"] or "-"))
    col4.metric("Последнее восстановление", str(health["last_recovered_at"] or "-"))
    if health.get("last_error"):
        st.code(health["last_error"], language=None)

st.divider()

# --- Ручное управление ---
st.header("Ручное Управление")
col1, col2 = st.columns(2)
with col1:
    if st.button("🚀 Разобрать очередь", use_container_width=True):
        call_outbox_endpoint("/api/internal/outbox/process")
        st.cache_data.clear()
with col2:
    if st.button("🔎 Разобрать, если есть что", use_container_width=True):
        call_outbox_endpoint("/api/internal/outbox/process-if-needed")
        st.cache_data.clear()

st.divider()

# --- События ---
st.header("📊 События в очереди")
col1, col2 = st.columns(2)
with col1:
    type_filter = st.selectbox("Тип:", ["Все", "studio.sync", "client.sync", "client.stats", "studio.owner.sync"])
with col2:
    failed_filter = st.checkbox("Только с неудачными попытками")

if st.button("🔄 Обновить"):
    st.cache_data.clear()

events = load_events(event_type=type_filter, only_failed=failed_filter)
if isinstance(events, str):
    if events != "TABLE_NOT_EXISTS":
        st.error(f"Ошибка при получении событий: {events[6:]}")
elif events.empty:
    st.info("Очередь пуста.")
else:
    st.dataframe(events, use_container_width=True)
    st.caption(f"Показано {len(events)} событий")
