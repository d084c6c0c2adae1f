from prometheus_client import CONTENT_TYPE_LATEST, Counter, generate_latest

REQUESTS_TOTAL = Counter(
    "requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
GATE_DECISIONS_TOTAL = Counter(
    "gate_decisions_total",
    "Contact form abuse gate decisions",
    ["outcome", "reason"],
)
CONTACT_EMAILS_TOTAL = Counter(
    "contact_emails_total",
    "Contact emails handed to the SMTP relay",
    ["status"],
)
CONTENT_STORE_REQUESTS_TOTAL = Counter(
    "content_store_requests_total",
    "Queries sent to the headless content store",
    ["status"],
)


__all__ = [
    "CONTENT_TYPE_LATEST",
    "REQUESTS_TOTAL",
    "GATE_DECISIONS_TOTAL",
    "CONTACT_EMAILS_TOTAL",
    "CONTENT_STORE_REQUESTS_TOTAL",
    "generate_latest",
]
