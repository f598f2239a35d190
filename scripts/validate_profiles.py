#!/usr/bin/env python3
"""
Plant Profile Validation Script
Solves every library profile against the full built-in salt catalog and
reports how many ions land in range.
"""
import sys
import os
import json
from typing import List, Dict, Any

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from nutrient_optimizer.services.catalog_provider import load_profiles_from_json, load_salts_from_json
from nutrient_optimizer.services.recipe_optimizer import NutrientRecipeOptimizer
from nutrient_optimizer.services.nutrient_solver_service import format_optimization_result


def run_validation() -> Dict[str, Any]:
    salts = load_salts_from_json()
    profiles = load_profiles_from_json()
    optimizer = NutrientRecipeOptimizer()

    results: List[Dict[str, Any]] = []
    stats = {"total": 0, "exact": 0, "approximate": 0, "failed": 0, "ions_out_of_range": 0}

    for profile in profiles:
        result = optimizer.solve(salts, profile)
        stats["total"] += 1
        if not result.success:
            stats["failed"] += 1
        elif result.is_approximate_solution:
            stats["approximate"] += 1
        else:
            stats["exact"] += 1

        out_of_range = [c.ion.code for c in result.ion_comparisons if not c.in_range]
        stats["ions_out_of_range"] += len(out_of_range)
        results.append({
            "profile": profile.name,
            "success": result.success,
            "approximate": result.is_approximate_solution,
            "salts_used": len(result.salt_amounts),
            "total_g_per_l": round(sum(result.salt_amounts.values()), 4),
            "out_of_range": out_of_range,
            "notes": list(result.infeasibility_reasons),
            "report": format_optimization_result(result),
        })

    return {"stats": stats, "results": results, "catalog_size": len(salts)}


def generate_report(validation: Dict[str, Any]) -> str:
    stats = validation["stats"]
    report = []
    report.append("=" * 80)
    report.append("PLANT PROFILE VALIDATION")
    report.append("=" * 80)
    report.append(f"Catalog: {validation['catalog_size']} salts, {stats['total']} profiles")
    report.append(f"Exact: {stats['exact']}  Approximate: {stats['approximate']}  Failed: {stats['failed']}")
    report.append("")

    for r in validation["results"]:
        status = "OK" if r["success"] and not r["approximate"] else ("APPROX" if r["success"] else "FAIL")
        report.append(
            f"[{status:>6}] {r['profile']:<40} salts={r['salts_used']:>2} "
            f"total={r['total_g_per_l']:.3f} g/L"
        )
        for ion in r["out_of_range"]:
            report.append(f"         out of range: {ion}")
    report.append("")

    if stats["failed"] == 0:
        report.append("All profiles solved.")
    else:
        report.append(f"{stats['failed']} profile(s) failed to solve.")
    if stats["ions_out_of_range"]:
        report.append(f"{stats['ions_out_of_range']} ion(s) out of range across all profiles.")
    return "\n".join(report)


if __name__ == "__main__":
    validation = run_validation()
    print(generate_report(validation))

    with open("profile_validation_data.json", "w", encoding="utf-8") as f:
        json.dump(validation, f, indent=2, ensure_ascii=False)
    print("\nWrote profile_validation_data.json")

    sys.exit(1 if validation["stats"]["failed"] else 0)
