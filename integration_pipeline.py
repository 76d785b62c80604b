#!/usr/bin/env python3
"""
================================================================================
HSE INCIDENT METRICS - PIPELINE D'INTÉGRATION
================================================================================
Orchestre un import complet:

1. Parsing du classeur via le canal hse_data_ingestion (Bronze → Silver)
2. Auto-assignation des heures d'exposition manquantes (hse_exposure)
3. Réconciliation avec l'état existant, verrou de vérification (Gold)
4. Calcul des indicateurs (hse_kpi_engine)

L'état est lu/écrit en JSON (--state) ou via SQLAlchemy (--db, state_loader).

Usage:
    python integration_pipeline.py --file export.xlsx --state state.json
    python integration_pipeline.py --file export.xlsx --db sqlite:///hse_state.db \
        --metrics-out metrics.json
================================================================================
"""

import os
import sys
import json
import argparse
import logging
from dataclasses import replace
from datetime import datetime, date
from pathlib import Path
from typing import Dict, Optional, Any

from hse_models import AppSettings, KPITargets
from hse_normalizer import parse_int
from hse_state import AppState, state_from_dict, state_to_dict, record_load
from hse_data_ingestion import (
    WorkbookParseChannel, ParseRequest, ParseFailure, HSEIngestionError,
)
from hse_exposure import generate_auto_exposure_records, get_missing_exposure_impact
from hse_reconciliation import upsert_incidents
from hse_kpi_engine import calculate_kpis, DashboardMetrics, SuggestActions
from hse_text_analysis import get_smart_suggested_actions
from state_loader import SafetyStateStore

logger = logging.getLogger("IntegrationPipeline")


# =============================================================================
# CONFIGURATION
# =============================================================================

def load_config_from_env() -> Dict:
    """Configuration depuis les variables HSE_*; valeur numérique invalide → défaut"""
    return {
        "state": {
            "db_url": os.getenv("HSE_STATE_DB_URL"),
            "file": os.getenv("HSE_STATE_FILE", "./hse_state.json"),
        },
        "settings": {
            "days_cap": parse_int(os.getenv("HSE_DAYS_CAP"), 180),
            "base_trir": parse_int(os.getenv("HSE_BASE_TRIR"), 200000),
            "base_if": parse_int(os.getenv("HSE_BASE_IF"), 1000000),
        },
        "paths": {
            "output_dir": os.getenv("HSE_OUTPUT_DIR", "./output"),
        },
    }


DEFAULT_CONFIG = load_config_from_env()


# =============================================================================
# CLASSE PIPELINE
# =============================================================================

class IntegrationPipeline:
    """
    Pipeline d'import et de calcul des indicateurs HSE.
    """

    def __init__(self, config: Dict = None, suggest_actions: SuggestActions = get_smart_suggested_actions):
        """
        Args:
            config: Configuration personnalisée (DEFAULT_CONFIG sinon)
            suggest_actions: Collaborateur des actions suggérées
        """
        self.config = config or DEFAULT_CONFIG
        self.suggest_actions = suggest_actions
        self.store = None

        self.stats = {
            "pipeline_start": None,
            "pipeline_end": None,
            "files_processed": [],
            "total_parsed": 0,
            "total_added": 0,
            "total_updated": 0,
            "warnings": 0,
            "errors": [],
        }

    # -------------------------------------------------------------------------
    # État
    # -------------------------------------------------------------------------

    def _get_store(self):
        if self.store is None:
            self.store = SafetyStateStore(self.config["state"]["db_url"])
            self.store.create_tables()
        return self.store

    def default_settings(self) -> AppSettings:
        return AppSettings.from_dict(self.config.get("settings"))

    def load_state(self) -> AppState:
        """Base de données si configurée, sinon fichier JSON, sinon état vide"""
        if self.config["state"].get("db_url"):
            return self._get_store().load_state()

        state_file = Path(self.config["state"]["file"])
        if state_file.exists():
            with open(state_file, "r", encoding="utf-8") as f:
                state = state_from_dict(json.load(f))
            logger.info(f"📂 État chargé depuis {state_file} ({len(state.incidents)} incidents)")
            return state

        logger.info("Aucun état existant, démarrage à vide")
        return replace(state_from_dict(None), settings=self.default_settings())

    def save_state(self, state: AppState) -> Optional[str]:
        if self.config["state"].get("db_url"):
            self._get_store().save_state(state)
            return None

        state_file = Path(self.config["state"]["file"])
        state_file.parent.mkdir(parents=True, exist_ok=True)
        with open(state_file, "w", encoding="utf-8") as f:
            json.dump(state_to_dict(state), f, ensure_ascii=False, indent=2, default=str)
        logger.info(f"💾 État sauvegardé dans {state_file}")
        return str(state_file)

    # -------------------------------------------------------------------------
    # Import
    # -------------------------------------------------------------------------

    def run_import(self, buffer: bytes, state: AppState, filename: str = "") -> Dict[str, Any]:
        """
        Exécute un import complet sur l'état donné.

        Returns:
            Résultat: status success|failed, étapes, rapport, et "state"
            (le nouvel état, ou l'état d'origine en cas d'échec)
        """
        self.stats["pipeline_start"] = self.stats["pipeline_start"] or datetime.now().isoformat()
        result = {
            "file": filename,
            "status": "success",
            "started_at": datetime.now().isoformat(),
            "steps": {},
            "state": state,
        }

        logger.info(f"\n{'=' * 60}")
        logger.info(f"🚀 IMPORT: {filename or '<buffer>'}")
        logger.info(f"{'=' * 60}")

        try:
            logger.info("📥 Step 1/3: Parsing workbook (Bronze → Silver)...")
            channel = WorkbookParseChannel()
            channel.send(ParseRequest(buffer=buffer, rules=state.rules))
            response = channel.receive()
            if isinstance(response, ParseFailure):
                raise HSEIngestionError(response.error)

            result["report"] = response.report.to_dict()
            result["steps"]["parse"] = {
                "incidents": len(response.incidents),
                "rules": len(response.rules),
                "warnings": len(response.report.warnings),
            }

            logger.info("⏱️ Step 2/3: Auto-assigning exposure hours...")
            exposure = generate_auto_exposure_records(response.incidents, state.exposure_hours)
            result["steps"]["exposure"] = {
                "records": len(exposure),
                "added": len(exposure) - len(state.exposure_hours),
            }

            logger.info("🔄 Step 3/3: Reconciling with stored state (Gold)...")
            merged = upsert_incidents(state.incidents, response.incidents)
            result["steps"]["reconcile"] = {"added": merged.added, "updated": merged.updated}

            new_state = replace(
                state,
                incidents=merged.incidents,
                exposure_hours=tuple(exposure),
                rules=response.rules,
            )
            result["state"] = record_load(new_state, filename, len(response.incidents))

            self.stats["files_processed"].append(filename)
            self.stats["total_parsed"] += len(response.incidents)
            self.stats["total_added"] += merged.added
            self.stats["total_updated"] += merged.updated
            self.stats["warnings"] += len(response.report.warnings)

        except Exception as e:
            result["status"] = "failed"
            result["error"] = str(e)
            self.stats["errors"].append(f"{filename or '<buffer>'}: {e}")
            logger.error(f"❌ Import failed: {e}")

        result["completed_at"] = datetime.now().isoformat()
        self.stats["pipeline_end"] = result["completed_at"]
        return result

    def import_file(self, filepath: str, state: AppState) -> Dict[str, Any]:
        with open(filepath, "rb") as f:
            buffer = f.read()
        return self.run_import(buffer, state, filename=Path(filepath).name)

    # -------------------------------------------------------------------------
    # Indicateurs
    # -------------------------------------------------------------------------

    def compute_metrics(self, state: AppState, targets: KPITargets = None,
                        reference_date: date = None) -> DashboardMetrics:
        return calculate_kpis(
            state.incidents,
            state.exposure_hours,
            state.global_km,
            state.settings,
            targets=targets,
            reference_date=reference_date,
            suggest_actions=self.suggest_actions,
        )

    def save_metrics(self, metrics: DashboardMetrics, filepath: str = None) -> str:
        if filepath is None:
            output_dir = Path(self.config["paths"]["output_dir"])
            filepath = str(output_dir / f"metrics_{datetime.now().strftime('%Y%m%d_%H%M%S')}.json")

        Path(filepath).parent.mkdir(parents=True, exist_ok=True)
        with open(filepath, "w", encoding="utf-8") as f:
            json.dump(metrics.to_dict(), f, ensure_ascii=False, indent=2, default=str)

        logger.info(f"✅ Indicateurs sauvegardés dans {filepath}")
        return filepath

    # -------------------------------------------------------------------------
    # Rapports et statistiques
    # -------------------------------------------------------------------------

    def print_summary(self, state: AppState = None, metrics: DashboardMetrics = None):
        """Affiche le résumé du pipeline"""
        print("\n" + "=" * 70)
        print("📊 RÉSUMÉ DU PIPELINE HSE")
        print("=" * 70)

        print(f"\n⏱️  Période: {self.stats['pipeline_start']} → {self.stats['pipeline_end']}")

        print("\n📥 IMPORT:")
        print(f"   Fichiers traités: {', '.join(self.stats['files_processed']) or 'Aucun'}")
        print(f"   Incidents lus:    {self.stats['total_parsed']}")
        print(f"   Ajoutés:          {self.stats['total_added']}")
        print(f"   Mis à jour:       {self.stats['total_updated']}")
        print(f"   Avertissements:   {self.stats['warnings']}")

        if state is not None:
            impact = get_missing_exposure_impact(state.incidents, state.exposure_hours)
            if impact:
                print("\n⚠️  HEURES-HOMME MANQUANTES:")
                for item in impact[:5]:
                    print(f"   - {item.site}: {len(item.missing_periods)} mois, "
                          f"{item.affected_incidents_count} incidents")

        if metrics is not None:
            print("\n📈 INDICATEURS:")
            print(f"   TRIR: {metrics.trir}   LTIF: {metrics.ltif}   DART: {metrics.dart}")
            print(f"   SR:   {metrics.sr}   FAR: {metrics.far}   IFAT: {metrics.ifat_rate}")
            print(f"   Prévision TRIR: {metrics.forecast_trir} "
                  f"({metrics.forecast_recordable_count} enregistrables projetés)")
            for alert in metrics.trend_alerts:
                print(f"   🔺 Tendance croissante: {alert.site}")

        if self.stats["errors"]:
            print(f"\n❌ ERREURS ({len(self.stats['errors'])}):")
            for err in self.stats["errors"][:5]:
                print(f"   - {err}")

        print("\n" + "=" * 70)


# =============================================================================
# INTERFACE CLI
# =============================================================================

def main(argv=None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s | %(levelname)s | %(name)s | %(message)s'
    )

    parser = argparse.ArgumentParser(
        description="HSE Incident Metrics Pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Exemples:
  python integration_pipeline.py --file export.xlsx
  python integration_pipeline.py --file export.xlsx --state data/state.json --metrics-out out/metrics.json
  python integration_pipeline.py --db sqlite:///hse_state.db --metrics-out metrics.json
        """
    )
    parser.add_argument("--file", "-f", help="Classeur d'incidents (.xlsx) à importer")
    parser.add_argument("--state", "-s", help="Fichier JSON de l'état (défaut: HSE_STATE_FILE)")
    parser.add_argument("--db", help="URL SQLAlchemy de l'état (défaut: HSE_STATE_DB_URL)")
    parser.add_argument("--metrics-out", "-m", help="Fichier JSON des indicateurs")

    args = parser.parse_args(argv)

    config = json.loads(json.dumps(DEFAULT_CONFIG))
    if args.state:
        config["state"]["file"] = args.state
    if args.db:
        config["state"]["db_url"] = args.db

    pipeline = IntegrationPipeline(config)
    state = pipeline.load_state()

    status = 0
    if args.file:
        result = pipeline.import_file(args.file, state)
        if result["status"] == "success":
            state = result["state"]
            pipeline.save_state(state)
        else:
            status = 1

    metrics = pipeline.compute_metrics(state)
    if args.metrics_out:
        pipeline.save_metrics(metrics, args.metrics_out)

    pipeline.print_summary(state, metrics)
    return status


if __name__ == "__main__":
    sys.exit(main())
