"""
State Loader - Persistance du sac d'état HSE (SQLAlchemy)
=========================================================
Adaptateur de stockage optionnel: une ligne JSON par clé de stockage dans la
table app_state. Le cœur du pipeline n'en dépend pas; il n'échange que la
forme en mémoire (hse_state).

Fonctionne avec toute base supportée par SQLAlchemy (PostgreSQL, SQLite...).
"""

import os
import json
import logging
from datetime import datetime
from typing import Dict, Optional

import pandas as pd
from sqlalchemy import create_engine, text

from hse_state import AppState, STORAGE_KEY, state_from_dict, state_to_dict

logger = logging.getLogger("SafetyStateStore")

DEFAULT_DB_URL = "sqlite:///hse_state.db"


class SafetyStateStore:
    """
    Stockage du sac d'état

    Usage:
        store = SafetyStateStore("sqlite:///hse_state.db")
        store.create_tables()
        store.save_state(state)
        state = store.load_state()
    """

    def __init__(self, connection_string: str = None):
        """
        Args:
            connection_string: URL SQLAlchemy
                               Si None, utilise HSE_STATE_DB_URL
        """
        if connection_string is None:
            connection_string = os.getenv("HSE_STATE_DB_URL", DEFAULT_DB_URL)

        self.engine = create_engine(connection_string, echo=False)
        logger.info(f"✅ Connected to: {self.engine.url.render_as_string(hide_password=True)}")

    def create_tables(self) -> None:
        """Créer la table de l'état"""
        with self.engine.begin() as conn:
            conn.execute(text("""
                CREATE TABLE IF NOT EXISTS app_state (
                    storage_key VARCHAR(100) PRIMARY KEY,
                    payload TEXT NOT NULL,
                    updated_at VARCHAR(40)
                )
            """))
        logger.info("✅ Table app_state prête")

    def save_state(self, state: AppState, storage_key: str = STORAGE_KEY) -> None:
        """Insère ou remplace l'état sous la clé donnée"""
        payload = json.dumps(state_to_dict(state), ensure_ascii=False, default=str)
        params = {"key": storage_key, "payload": payload, "updated_at": datetime.now().isoformat()}

        with self.engine.begin() as conn:
            existing = conn.execute(
                text("SELECT 1 FROM app_state WHERE storage_key = :key"), {"key": storage_key}
            ).fetchone()
            if existing:
                conn.execute(text("""
                    UPDATE app_state SET payload = :payload, updated_at = :updated_at
                    WHERE storage_key = :key
                """), params)
            else:
                conn.execute(text("""
                    INSERT INTO app_state (storage_key, payload, updated_at)
                    VALUES (:key, :payload, :updated_at)
                """), params)

        logger.info(f"💾 État sauvegardé: {len(state.incidents)} incidents ({storage_key})")

    def load_state(self, storage_key: str = STORAGE_KEY) -> AppState:
        """Charge l'état; un état vide par défaut si la clé est absente"""
        with self.engine.connect() as conn:
            row = conn.execute(
                text("SELECT payload FROM app_state WHERE storage_key = :key"), {"key": storage_key}
            ).fetchone()

        if row is None:
            logger.info(f"Aucun état pour '{storage_key}', état par défaut")
            return state_from_dict(None)
        return state_from_dict(json.loads(row[0]))

    def incidents_frame(self, storage_key: str = STORAGE_KEY) -> pd.DataFrame:
        """Incidents stockés sous forme de DataFrame (sans le journal d'audit)"""
        state = self.load_state(storage_key)
        rows = [{k: v for k, v in i.to_dict().items() if k != "change_log"} for i in state.incidents]
        return pd.DataFrame(rows)

    def health_check(self, storage_key: str = STORAGE_KEY) -> Dict:
        """Vérifier la connexion et l'état stocké"""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
                row = conn.execute(
                    text("SELECT payload, updated_at FROM app_state WHERE storage_key = :key"),
                    {"key": storage_key},
                ).fetchone()

            payload: Optional[Dict] = json.loads(row[0]) if row else None
            return {
                "status": "healthy",
                "storage_key": storage_key,
                "total_incidents": len(payload.get("incidents", [])) if payload else 0,
                "total_exposure_hours": len(payload.get("exposure_hours", [])) if payload else 0,
                "last_update": row[1] if row else None,
                "checked_at": datetime.now().isoformat(),
            }

        except Exception as e:
            return {
                "status": "unhealthy",
                "error": str(e),
                "checked_at": datetime.now().isoformat(),
            }


# ============================================================
# CLI
# ============================================================

if __name__ == "__main__":
    import argparse

    logging.basicConfig(level=logging.INFO, format='%(asctime)s | %(levelname)s | %(name)s | %(message)s')

    parser = argparse.ArgumentParser(description="HSE State Store")
    parser.add_argument("--db", type=str, default=None, help="URL SQLAlchemy")
    parser.add_argument("--create-tables", action="store_true", help="Créer la table")
    parser.add_argument("--incidents", action="store_true", help="Afficher les incidents stockés")
    parser.add_argument("--health", action="store_true", help="Health check")

    args = parser.parse_args()
    store = SafetyStateStore(args.db)

    if args.create_tables:
        store.create_tables()

    if args.incidents:
        print(store.incidents_frame().to_string())

    if args.health:
        print(json.dumps(store.health_check(), indent=2))
