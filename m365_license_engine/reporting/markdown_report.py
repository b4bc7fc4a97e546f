"""
Markdown report — human-readable assignment report rendered via Jinja2.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from jinja2 import DictLoader, Environment, select_autoescape

from ..catalog.atomic import write_text_atomic

ASSIGNMENT_TEMPLATE = """\
# License Assignment Report

| | |
|---|---|
| Tenant | {{ context.TenantId or "unknown" }} |
| Retrieved by | {{ context.CallerIdentity }} |
| Retrieved (UTC) | {{ context.RetrievedUtc }} |

## Search Criteria

{% for key, values in criteria.items() if values %}
- **{{ key }}**: {{ values | join(", ") if values is iterable and values is not string else values }}
{% endfor %}

## Summary

- Users processed: {{ summary.UsersProcessed }}
- Users matched: {{ summary.UsersMatched }}
- Matching assignments: {{ summary.TotalMatchingAssignments }}
- Unique SKUs: {{ summary.UniqueSkus }}

{% if assignments %}
## Assignments

| User | SKU | Matching plans | Enabled |
|---|---|---|---|
{% for a in assignments %}
| {{ a.UserPrincipalName }} | {{ a.SkuPartNumber or a.SkuId }} | {{ a.MatchingPlans | map(attribute="ServicePlanName") | join(", ") }} | {{ a.EnabledMatchingPlans }}/{{ a.TotalMatchingPlans }} |
{% endfor %}
{% else %}
_No assignments matched the search criteria._
{% endif %}
"""

_env = Environment(
    loader=DictLoader({"assignments.md.j2": ASSIGNMENT_TEMPLATE}),
    autoescape=select_autoescape([]),
    trim_blocks=True,
    lstrip_blocks=True,
)


def render_markdown(report: dict[str, Any]) -> str:
    template = _env.get_template("assignments.md.j2")
    return template.render(
        context=report.get("TenantContext", {}),
        criteria=report.get("SearchCriteria", {}),
        summary=report.get("Summary", {}),
        assignments=report.get("Assignments", []),
    )


def export_markdown(report: dict[str, Any], path: Path) -> Path:
    """Render the assignment report as Markdown and write it to `path`."""
    return write_text_atomic(Path(path), render_markdown(report))
