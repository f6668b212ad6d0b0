"""Prometheus counters for identity workflows."""

from __future__ import annotations

from prometheus_client import Counter

LOGIN_OUTCOMES = Counter(
    "identity_login_outcomes_total",
    "Login attempts by outcome",
    ["outcome"],
)

SUBSCRIPTION_ACTIVATIONS = Counter(
    "identity_subscription_activations_total",
    "Payment callbacks processed by result",
    ["result"],
)

MAIL_DISPATCHED = Counter(
    "identity_mail_dispatched_total",
    "Transactional mails handed to the dispatcher by kind",
    ["kind"],
)
