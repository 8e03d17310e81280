"""Alert delivery adapters.

Alerts leave the service through an ``AbstractAlertSink`` so the delivery
mechanism (log only, webhook, SIEM) can change without touching the engine.
"""
