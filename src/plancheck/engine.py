# src/plancheck/engine.py

from plancore.snapshot import PlanSnapshot, Report

from .aggregator import aggregate
from .checks import AnalysisBundle, run_all_checks
from .config import get_check_logger, pinned_config

logger = get_check_logger("plancheck")


def evaluate_plan(plan: PlanSnapshot) -> Report:
    """
    Interfaz de alto nivel del plan check.

    Toma un PlanSnapshot y devuelve un Report con las seis categorías
    (Plan, Dose, Beam, Structure, Isocenter, Status). Nunca lanza por datos
    faltantes o fallos de cómputo: se degradan a findings.
    """
    logger.info("Plan check started for %s", plan.plan_id)

    # Una sola lectura de overrides para todo el reporte
    with pinned_config():
        # 1) Correr todos los analizadores definidos en plancheck.checks
        bundle: AnalysisBundle = run_all_checks(plan)

        # 2) Construir el Report a partir de esos resultados
        report = aggregate(bundle)

    logger.info(
        "Plan check finished for %s: %d findings, %d critical",
        plan.plan_id, report.num_findings, report.num_critical,
    )
    return report
