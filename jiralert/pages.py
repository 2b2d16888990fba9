from __future__ import annotations

import jinja2

DOCS_URL = "https://github.com/prometheus-community/jiralert#readme"

_PAGES = {
    "page": """<html>
<head>
  <title>JIRAlert</title>
  <style type="text/css">
    body { margin: 0; font-family: "Helvetica Neue", Helvetica, Arial, sans-serif; font-size: 14px; line-height: 1.42857143; color: #333; background-color: #fff; }
    .navbar { display: flex; background-color: #222; margin: 0; border-width: 0 0 1px; border-style: solid; border-color: #080808; }
    .navbar > * { margin: 0; padding: 15px; }
    .navbar * { line-height: 20px; color: #9d9d9d; }
    .navbar a { text-decoration: none; }
    .navbar a:hover, .navbar a:focus { color: #fff; }
    .navbar-header { font-size: 18px; }
    body > * { margin: 15px; padding: 0; }
    pre { padding: 10px; font-size: 13px; background-color: #f5f5f5; border: 1px solid #ccc; }
    h1, h2 { font-weight: 500; }
    a { color: #337ab7; }
  </style>
</head>
<body>
  <div class="navbar">
    <div class="navbar-header"><a href="/">JIRAlert</a></div>
    <div><a href="/config">Configuration</a></div>
    <div><a href="/metrics">Metrics</a></div>
    <div><a href="{{ docs_url }}">Help</a></div>
  </div>
  {% block content %}{% endblock %}
</body>
</html>
""",
    "home": """{% extends "page" %}
{% block content %}
  <p>This is <a href="{{ docs_url }}">JIRAlert</a>, a
    <a href="https://prometheus.io/docs/alerting/configuration/#webhook_config">webhook receiver</a> for
    <a href="https://prometheus.io/docs/alerting/alertmanager/">Prometheus Alertmanager</a>.</p>
{% endblock %}
""",
    "config": """{% extends "page" %}
{% block content %}
  <h2>Configuration</h2>
  <pre>{{ config }}</pre>
{% endblock %}
""",
}

_env = jinja2.Environment(loader=jinja2.DictLoader(_PAGES), autoescape=True)


def render_home() -> str:
    return _env.get_template("home").render(docs_url=DOCS_URL)


def render_config(config_text: str) -> str:
    return _env.get_template("config").render(docs_url=DOCS_URL, config=config_text)
