"""
SIWA Application Layer

This package wires the Apple ID integration into something an application can
drive: configuration, the authorization service, and the orchestrators that
run the sign-in and withdrawal pipelines.

Key Components:
- config.py: Configuration management using Pydantic settings
- service.py: AuthorizationService, constructed once with its dependencies
- orchestrator.py: Sign-in and withdrawal state machines with single-flight
  runs and observer callbacks
- metrics.py: Metrics abstraction (Telegraf/StatsD or no-op)
- cli.py: Command line tools (siwa-secret, siwa-decode, siwa-revoke)
"""
