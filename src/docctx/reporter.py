"""Utilization reporting.

Read-only views over assembly results: how much of the budget a document's
context used, what was left out, and what to tune.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Dict, List

from docctx.logger import get_logger
from docctx.models import AssemblyResult, BudgetTier, UtilizationReport
from docctx.token_counter import format_budget

if TYPE_CHECKING:
    from docctx.context_engine import ContextBuilder

logger = get_logger()

LOW_UTILIZATION = 10.0
MODERATE_UTILIZATION = 30.0
NEAR_CAPACITY = 90.0
LARGE_UNUSED_SHARE = 0.5


def utilization_level(percentage: float) -> str:
    if percentage < LOW_UTILIZATION:
        return "low"
    if percentage < MODERATE_UTILIZATION:
        return "moderate"
    if percentage > NEAR_CAPACITY:
        return "near capacity"
    return "high"


class UtilizationReporter:
    """Derives utilization reports from a ContextBuilder's results."""

    def __init__(self, builder: "ContextBuilder"):
        self.builder = builder

    @property
    def store(self):
        return self.builder.store

    # ------------------------------------------------------------------
    # Per-document analysis
    # ------------------------------------------------------------------
    def analyze(self, document_type: str) -> UtilizationReport:
        """Build (or reuse) the context for *document_type* and report on it."""
        result = self.builder.build(document_type)
        included = set(result.included_fragment_keys)

        ranked = self.builder.scorer.rank(self.store.candidates(), document_type)
        scores = {f.key: s for f, s in ranked}
        potential = [f.key for f, _ in ranked if f.key not in included]

        report = UtilizationReport(
            document_type=document_type,
            total_tokens=result.total_tokens,
            available_budget=result.available_budget,
            utilization_percentage=result.utilization_percentage,
            level=utilization_level(result.utilization_percentage),
            tier=result.tier,
            phase_reached=result.phase_reached,
            included_contexts=list(result.included_fragment_keys),
            potential_contexts=potential,
            overflow_warnings=list(result.overflow_warnings),
            fragment_breakdown=self._breakdown(result, scores),
        )
        report.recommendations = self._recommend(result, report)
        return report

    def _breakdown(self, result: AssemblyResult, scores: Dict[str, float]) -> List[Dict[str, Any]]:
        rows = []
        for key in result.included_fragment_keys:
            tokens = result.fragment_tokens.get(key, 0)
            fragment = self.store.get(key)
            rows.append({
                "key": key,
                "category": fragment.category.value if fragment else "unknown",
                "tokens": tokens,
                "share": round(tokens / result.total_tokens * 100, 2) if result.total_tokens else 0.0,
                "score": round(scores.get(key, 0.0), 3),
            })
        return rows

    def _recommend(self, result: AssemblyResult, report: UtilizationReport) -> List[str]:
        recs: List[str] = []
        pct = result.utilization_percentage
        unused = result.available_budget - result.total_tokens

        if report.level == "low":
            recs.append(
                f"Low utilization ({pct:.1f}%): register more enriched context "
                "or lower the discovery min relevance score"
            )
        elif report.level == "near capacity":
            recs.append(
                f"Near capacity ({pct:.1f}%): increase the min relevance threshold "
                "or use a larger-context model"
            )

        truncated = [w for w in result.overflow_warnings if w.action == "truncated"]
        skipped = [w for w in result.overflow_warnings if w.action == "skipped"]
        if truncated:
            recs.append(
                f"{len(truncated)} fragment(s) truncated to fit "
                f"({', '.join(w.fragment_key for w in truncated)}); content was lost"
            )
        if skipped:
            recs.append(
                f"{len(skipped)} fragment(s) skipped for budget "
                f"({', '.join(w.fragment_key for w in skipped)}); split or summarize them"
            )

        if report.potential_contexts:
            if result.tier is BudgetTier.LARGE and unused > result.available_budget * LARGE_UNUSED_SHARE:
                ultra = self.builder.assembly.ultra_min_tokens
                recs.append(
                    f"Large unused budget ({unused:,} tokens): only the top "
                    f"{self.builder.assembly.supplementary_max_fragments} supplementary fragments "
                    f"are added; a model with more than {ultra:,} available tokens "
                    "is eligible for Phase 2 comprehensive assembly"
                )
            elif result.tier is BudgetTier.STANDARD:
                recs.append(
                    "Standard-tier model: only fragments matching the document type are "
                    "included; tag fragments or use a model with a larger window"
                )
            recs.append(
                f"{len(report.potential_contexts)} additional context source(s) "
                "available for inclusion"
            )
        return recs

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------
    def render_markdown(self, report: UtilizationReport) -> str:
        lines = [
            f"# Context Utilization: {report.document_type}",
            "",
            f"- **Tokens**: {format_budget(report.total_tokens, report.available_budget)}",
            f"- **Utilization**: {report.utilization_percentage:.2f}% ({report.level})",
            f"- **Tier**: {report.tier.value} (phase {report.phase_reached} reached)",
            "",
        ]
        if report.fragment_breakdown:
            lines.append("## Included Context")
            lines.append("")
            lines.append("| Fragment | Category | Tokens | Share |")
            lines.append("|---|---|---:|---:|")
            for row in report.fragment_breakdown:
                lines.append(
                    f"| {row['key']} | {row['category']} | {row['tokens']:,} | {row['share']:.1f}% |"
                )
            lines.append("")
        if report.potential_contexts:
            lines.append("## Not Included")
            lines.append("")
            lines.extend(f"- {key}" for key in report.potential_contexts)
            lines.append("")
        if report.overflow_warnings:
            lines.append("## Overflow")
            lines.append("")
            lines.extend(f"> ⚠️ {w.message}" for w in report.overflow_warnings)
            lines.append("")
        if report.recommendations:
            lines.append("## Recommendations")
            lines.append("")
            lines.extend(f"- {r}" for r in report.recommendations)
            lines.append("")
        return "\n".join(lines)

    def render_json(self, report: UtilizationReport) -> str:
        return json.dumps(report.to_dict(), indent=2)

    def render_engine_report(self) -> str:
        """Whole-store performance report, independent of a document type."""
        profile = self.builder.profile
        tier = self.builder.tier
        core = self.store.core
        core_tokens = core.token_count if core else 0
        enriched = self.store.enriched_fragments()
        injected = self.store.injected_fragments()
        enriched_tokens = sum(f.token_count for f in enriched)
        injected_tokens = sum(f.token_count for f in injected)
        available = profile.available_tokens
        total = core_tokens + enriched_tokens + injected_tokens
        pct = total / available * 100 if available else 0.0
        cache = self.builder.cache

        report = "# Context Manager Performance Report\n\n"
        report += f"- **Model**: {profile.key}{' (default profile)' if profile.is_default else ''}\n"
        report += f"- **Core Context Tokens**: {core_tokens:,}\n"
        report += f"- **Enriched Context Items**: {len(enriched)}\n"
        report += f"- **Total Enriched Tokens**: {enriched_tokens:,}\n"
        report += f"- **Injected Context Items**: {len(injected)}\n"
        report += f"- **Total Injected Tokens**: {injected_tokens:,}\n"
        report += f"- **Cache Size**: {len(cache)}\n"
        report += f"- **Max Token Limit**: {profile.max_context_tokens:,}\n"
        report += f"- **Available for Context**: {available:,}\n"
        report += f"- **Model Tier**: {tier.value}\n"
        report += f"- **Context Utilization**: {pct:.2f}%\n"
        report += f"- **Cache Efficiency**: {'Active' if len(cache) > 0 else 'Inactive'}"
        report += f" ({cache.hits} hits, {cache.misses} misses)\n\n"

        if tier is not BudgetTier.STANDARD:
            if pct < LOW_UTILIZATION:
                report += "## 🔍 Optimization Recommendations\n"
                report += "- **Ultra-low utilization**: Consider adding more comprehensive project context\n"
                report += "- **Potential for enhancement**: Include additional documentation sources\n\n"
            elif pct < MODERATE_UTILIZATION:
                report += "## ✅ Good Performance\n"
                report += "- **Moderate utilization**: Good balance of context and efficiency\n"
                report += f"- **Room for growth**: Can include {(available - total) // 1000:,}k more tokens\n\n"
            else:
                report += "## 🌟 Excellent Utilization\n"
                report += "- **High utilization**: Making good use of large context capabilities\n\n"
        elif pct > 100:
            report += "## ⚠️ Over Budget\n"
            report += "- **Store exceeds the window**: only matching fragments are assembled; expect truncation\n\n"
        return report
