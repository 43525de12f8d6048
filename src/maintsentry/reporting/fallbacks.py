"""Built-in template literals used when no template file resolves.

Every literal carries FALLBACK_MARKER so a rendered report shows that it was
produced from the built-in copy rather than an installed template.
"""
from __future__ import annotations

from typing import Dict

FALLBACK_MARKER = "maintsentry:fallback-template"

_HTML_MAIN = """<!DOCTYPE html>
<!-- maintsentry:fallback-template -->
<html lang="en">
<head>
  <meta charset="utf-8" />
  <title>{{TITLE}}</title>
  <style>{{STYLES}}</style>
</head>
<body>
  <header>
    <h1>{{TITLE}}</h1>
    <p><strong>Session:</strong> {{SESSION_ID}} &middot; <strong>Mode:</strong> {{MODE}}</p>
    <p><strong>Generated:</strong> {{GENERATED_AT}}</p>
    <ul>{{HOST_ROWS}}</ul>
  </header>
  <main>
    {{DASHBOARD}}
    <section class="modules">{{MODULE_CARDS}}</section>
    {{ERRORS_SECTION}}
  </main>
  <script>{{SCRIPT}}</script>
</body>
</html>
"""

_HTML_MODULE_CARD = """<!-- maintsentry:fallback-template -->
<article class="module-card status-{{STATUS_CLASS}}" data-status="{{STATUS_CLASS}}" data-name="{{TASK_NAME}}">
  <h3>{{TASK_NAME}} <small>{{TASK_KIND}}</small></h3>
  <p>Status: {{STATUS_LABEL}} {{REASON}}</p>
  <p>Detected {{ITEMS_DETECTED}}, processed {{ITEMS_PROCESSED}}, failed {{ITEMS_FAILED}} in {{DURATION_MS}} ms</p>
  <p>{{ERROR}}</p>
</article>
"""

_HTML_DASHBOARD = """<!-- maintsentry:fallback-template -->
<section class="dashboard">
  <h2>Health score: {{HEALTH_SCORE}}</h2>
  <p>Success rate {{SUCCESS_RATE}}% &middot; Security {{SECURITY_SCORE}} &middot; Error density {{ERROR_DENSITY_SCORE}}</p>
  <p>Data completeness {{DATA_COMPLETENESS}}% &middot; Tasks {{TOTAL_TASKS}} &middot; Errors {{ERROR_COUNT}}</p>
</section>
"""

_HTML_ERRORS = """<!-- maintsentry:fallback-template -->
<section class="errors">
  <h2>Errors ({{ERROR_TOTAL}})</h2>
  <table><tbody>{{ERROR_ROWS}}</tbody></table>
</section>
"""

_TEXT_MAIN = """{{TITLE}}
[maintsentry:fallback-template]
Session: {{SESSION_ID}}  Mode: {{MODE}}
Generated: {{GENERATED_AT}}
{{HOST_ROWS}}
{{DASHBOARD}}
Tasks:
{{MODULE_CARDS}}
{{ERRORS_SECTION}}
"""

_TEXT_MODULE_CARD = """  - {{TASK_NAME}} [{{TASK_KIND}}] {{STATUS_LABEL}} {{REASON}}
    detected={{ITEMS_DETECTED}} processed={{ITEMS_PROCESSED}} failed={{ITEMS_FAILED}} duration={{DURATION_MS}}ms [maintsentry:fallback-template]
"""

_TEXT_DASHBOARD = """[maintsentry:fallback-template]
Health score: {{HEALTH_SCORE}}
Success rate: {{SUCCESS_RATE}}%  Security: {{SECURITY_SCORE}}  Error density: {{ERROR_DENSITY_SCORE}}
Data completeness: {{DATA_COMPLETENESS}}%  Tasks: {{TOTAL_TASKS}}  Errors: {{ERROR_COUNT}}
"""

_TEXT_ERRORS = """[maintsentry:fallback-template]
Errors ({{ERROR_TOTAL}}):
{{ERROR_ROWS}}
"""

_CSS = """/* maintsentry:fallback-template */
body { font-family: sans-serif; margin: 2rem; color: #222; }
.module-card { border: 1px solid #ccc; padding: 0.5rem 1rem; margin: 0.5rem 0; }
.status-failed { border-color: #b91c1c; }
.status-partial_failure { border-color: #b45309; }
"""

_JS = """// maintsentry:fallback-template
"""

FALLBACK_TEMPLATES: Dict[str, str] = {
    "report.html": _HTML_MAIN,
    "module_card.html": _HTML_MODULE_CARD,
    "dashboard.html": _HTML_DASHBOARD,
    "errors.html": _HTML_ERRORS,
    "report.txt": _TEXT_MAIN,
    "module_card.txt": _TEXT_MODULE_CARD,
    "dashboard.txt": _TEXT_DASHBOARD,
    "errors.txt": _TEXT_ERRORS,
    "report.css": _CSS,
    "dashboard.js": _JS,
}


def fallback_for(name: str) -> str:
    """Return the built-in literal for ``name``; never empty."""
    try:
        return FALLBACK_TEMPLATES[name]
    except KeyError:
        return f"<!-- {FALLBACK_MARKER}: {name} -->\n"
