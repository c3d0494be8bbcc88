"""Static AlertManager routing, templates and Prometheus alert rules."""

from typing import Any

from .config import Settings

# Secret keys, also the file names under the secrets mount
SMTP_PASSWORD = "smtp-password"
PAGERDUTY_SERVICE_KEY = "pagerduty-service-key"
PAGERDUTY_FINANCIAL_KEY = "pagerduty-financial-key"
PAGERDUTY_SECURITY_KEY = "pagerduty-security-key"
SLACK_WEBHOOK = "slack-webhook"
TEAMS_WEBHOOK = "teams-webhook"
DISCORD_WEBHOOK = "discord-webhook"


def alertmanager_config(settings: Settings, secrets_dir: str) -> dict[str, Any]:
    """
    Build the ``alertmanager.yml`` document.

    Escalation tiers:
    - critical + domain=financial -> financial PagerDuty service
    - critical + domain=security -> security PagerDuty service
    - other critical -> default PagerDuty service, copied to email
    - warning -> Slack, fanned out to Teams and Discord
    Credentials are read from files mounted from the notification secret.
    """

    def secret_file(key: str) -> str:
        return f"{secrets_dir}/{key}"

    return {
        "global": {
            "resolve_timeout": "5m",
            "smtp_smarthost": settings.smtp_smarthost,
            "smtp_from": settings.smtp_from,
            "smtp_auth_username": settings.smtp_from,
            "smtp_auth_password_file": secret_file(SMTP_PASSWORD),
            "slack_api_url_file": secret_file(SLACK_WEBHOOK),
        },
        "templates": ["/etc/alertmanager/templates/*.tmpl"],
        "route": {
            "receiver": "slack-warnings",
            "group_by": ["alertname", "service", "severity"],
            "group_wait": "30s",
            "group_interval": "5m",
            "repeat_interval": "4h",
            "routes": [
                {
                    "receiver": "pagerduty-financial",
                    "matchers": ['severity="critical"', 'domain="financial"'],
                    "group_wait": "10s",
                    "repeat_interval": "1h",
                },
                {
                    "receiver": "pagerduty-security",
                    "matchers": ['severity="critical"', 'domain="security"'],
                    "group_wait": "10s",
                    "repeat_interval": "1h",
                },
                {
                    "receiver": "pagerduty-critical",
                    "matchers": ['severity="critical"'],
                    "group_wait": "10s",
                    "repeat_interval": "1h",
                    "continue": True,
                },
                {
                    "receiver": "email-critical",
                    "matchers": ['severity="critical"'],
                },
                {
                    "receiver": "slack-warnings",
                    "matchers": ['severity="warning"'],
                    "continue": True,
                },
                {
                    "receiver": "chat-warnings",
                    "matchers": ['severity="warning"'],
                },
            ],
        },
        "inhibit_rules": [
            {
                "source_matchers": ['severity="critical"'],
                "target_matchers": ['severity="warning"'],
                "equal": ["alertname", "service"],
            }
        ],
        "receivers": [
            {
                "name": "pagerduty-critical",
                "pagerduty_configs": [
                    {"routing_key_file": secret_file(PAGERDUTY_SERVICE_KEY), "severity": "critical"}
                ],
            },
            {
                "name": "pagerduty-financial",
                "pagerduty_configs": [
                    {"routing_key_file": secret_file(PAGERDUTY_FINANCIAL_KEY), "severity": "critical"}
                ],
            },
            {
                "name": "pagerduty-security",
                "pagerduty_configs": [
                    {"routing_key_file": secret_file(PAGERDUTY_SECURITY_KEY), "severity": "critical"}
                ],
            },
            {
                "name": "email-critical",
                "email_configs": [
                    {
                        "to": settings.alert_email_to,
                        "html": '{{ template "alert.email.html" . }}',
                        "send_resolved": True,
                    }
                ],
            },
            {
                "name": "slack-warnings",
                "slack_configs": [
                    {
                        "channel": "#alerts",
                        "title": '{{ template "alert.title" . }}',
                        "text": '{{ template "alert.text" . }}',
                        "send_resolved": True,
                    }
                ],
            },
            {
                "name": "chat-warnings",
                "msteams_configs": [{"webhook_url_file": secret_file(TEAMS_WEBHOOK)}],
                "discord_configs": [{"webhook_url_file": secret_file(DISCORD_WEBHOOK)}],
            },
        ],
    }


def notification_templates() -> dict[str, str]:
    return {
        "alerts.tmpl": (
            '{{ define "alert.title" }}[{{ .Status | toUpper }}] '
            "{{ .CommonLabels.alertname }}{{ end }}\n"
            '{{ define "alert.text" }}{{ range .Alerts }}'
            "*{{ .Annotations.summary }}*\n{{ .Annotations.description }}\n"
            "{{ if .Annotations.runbook_url }}Runbook: {{ .Annotations.runbook_url }}{{ end }}\n"
            "{{ end }}{{ end }}\n"
        ),
        "email.tmpl": (
            '{{ define "alert.email.html" }}<h2>{{ .CommonLabels.alertname }}</h2><ul>'
            "{{ range .Alerts }}<li><b>{{ .Annotations.summary }}</b>: "
            "{{ .Annotations.description }}</li>{{ end }}</ul>{{ end }}\n"
        ),
    }


def _rule(
    alert: str,
    expr: str,
    duration: str,
    severity: str,
    domain: str,
    summary: str,
) -> dict[str, Any]:
    return {
        "alert": alert,
        "expr": expr,
        "for": duration,
        "labels": {"severity": severity, "domain": domain},
        "annotations": {
            "summary": summary,
            "description": f"{summary} ({{{{ $labels.namespace }}}}/{{{{ $labels.pod }}}})",
        },
    }


def alert_rule_groups(settings: Settings) -> list[dict[str, Any]]:
    """Alert rules grouped by infrastructure, performance, business and security."""
    ns = f'namespace="{settings.target_namespace}"'
    return [
        {
            "name": "infrastructure",
            "rules": [
                _rule("ServiceDown", f"up{{{ns}}} == 0", "1m", "critical",
                      "infrastructure", "Service is down"),
                _rule(
                    "HighMemoryUsage",
                    f'sum by (pod) (container_memory_working_set_bytes{{{ns}}}) '
                    f'/ sum by (pod) (kube_pod_container_resource_limits{{{ns},resource="memory"}}) > 0.9',
                    "5m", "warning", "infrastructure", "Memory usage above 90% of limit",
                ),
                _rule(
                    "HighCPUUsage",
                    f"sum by (pod) (rate(container_cpu_usage_seconds_total{{{ns}}}[5m])) > 0.8",
                    "5m", "warning", "infrastructure", "CPU usage above 80%",
                ),
            ],
        },
        {
            "name": "performance",
            "rules": [
                _rule(
                    "HighResponseTime",
                    "histogram_quantile(0.95, sum by (le, service) "
                    f"(rate(http_server_requests_seconds_bucket{{{ns}}}[5m]))) > 2",
                    "5m", "warning", "performance", "p95 response time above 2s",
                ),
                _rule(
                    "HighErrorRate",
                    f'sum by (service) (rate(http_server_requests_seconds_count{{{ns},status=~"5.."}}[5m])) '
                    f"/ sum by (service) (rate(http_server_requests_seconds_count{{{ns}}}[5m])) > 0.05",
                    "5m", "critical", "performance", "HTTP 5xx rate above 5%",
                ),
            ],
        },
        {
            "name": "business",
            "rules": [
                _rule(
                    "LowConversionRate",
                    f"sum(rate(business_conversions_total{{{ns}}}[30m])) "
                    f"/ sum(rate(business_sessions_total{{{ns}}}[30m])) < 0.01",
                    "30m", "warning", "business", "Conversion rate below 1%",
                ),
                _rule(
                    "PaymentFailures",
                    f"sum(rate(payment_failures_total{{{ns}}}[5m])) > 0.1",
                    "2m", "critical", "financial", "Payment failures detected",
                ),
            ],
        },
        {
            "name": "security",
            "rules": [
                _rule(
                    "UnauthorizedAccess",
                    f'sum(rate(http_server_requests_seconds_count{{{ns},status="401"}}[5m])) > 1',
                    "2m", "critical", "security", "Burst of unauthorized requests",
                ),
                _rule(
                    "SuspiciousActivity",
                    f'sum(rate(http_server_requests_seconds_count{{{ns},status="403"}}[5m])) > 5',
                    "5m", "warning", "security", "Elevated forbidden request rate",
                ),
            ],
        },
    ]
