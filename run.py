import argparse
import logging
import time
from pathlib import Path

from reparto.config import load_config
from reparto.data_loader import export_outputs, load_roster
from reparto.pipeline import PlacementResult, run_placement


def print_summary(result: PlacementResult) -> None:
    print("\n" + "=" * 70)
    print("RESUMEN DEL REPARTO")
    print("=" * 70)
    for name, value in result.phase_counts.items():
        print(f"{name:<22} {value}")
    if result.optimize is not None:
        opt = result.optimize
        print(
            f"Fase 4: {opt.status} | puntaje {opt.initial_score:.2f} -> {opt.final_score:.2f}"
            f" (mejora {opt.improvement:.2f})"
            f" | mejor reinicio: {opt.best_restart}"
        )
    if result.report is not None:
        print(f"Separaciones violadas: {len(result.report.separation_violations)}")
        print(f"Agrupaciones divididas: {len(result.report.split_cohorts)}")
    print(f"Conflictos aceptados: {len(result.unresolved)} | Alumnos inviables: {len(result.infeasible)}")
    for w in result.warnings:
        print(f"AVISO: {w}")
    print("=" * 70 + "\n")


def main():
    parser = argparse.ArgumentParser(description="Reparto de alumnos en clases en cuatro fases")
    parser.add_argument("--config", default="config.yaml", help="Ruta al archivo de configuración")
    parser.add_argument("--data_dir", default="data", help="Directorio con alumnos.csv y clases.csv")
    parser.add_argument("--out_dir", default="outputs", help="Directorio de salida")
    parser.add_argument("--seed", type=int, default=None, help="Semilla base (sobrescribe la del config)")
    parser.add_argument("--verbose", action="store_true", help="Muestra el log de cada fase")
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    cfg = load_config(args.config)
    if args.seed is not None:
        cfg.seed = args.seed

    print("Cargando datos...")
    roster = load_roster(args.data_dir)
    print(f"Alumnos: {len(roster.students)} | Clases: {len(roster.classes)} | Reinicios: {cfg.max_restarts}")

    start = time.perf_counter()
    result = run_placement(roster, cfg)
    elapsed = time.perf_counter() - start

    if result.configuration_errors:
        print("\n--- CONFIGURACIÓN INVÁLIDA ---")
        for msg in result.configuration_errors:
            print(f"- {msg}")
    else:
        print_summary(result)
        print(f"Tiempo: {elapsed:.2f}s")

    out_dir = Path(args.out_dir)
    export_outputs(roster, result, cfg, out_dir)
    print(f"Se guardaron resultados en {out_dir}/reparto.csv y {out_dir}/conflictos.csv")
    return 0 if result.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
