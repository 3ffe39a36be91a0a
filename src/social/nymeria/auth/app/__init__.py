"""
Nymeria Auth Application Layer

This package implements the web application layer using the aiohttp framework. It exposes
the endpoints that keep server-side session records in step with client-held OAuth sessions.

Key Components:
- cli.py: Entry point for running the application
- server.py: Web server configuration and middleware setup
- config.py: Configuration management using Pydantic settings
- handlers/: Request handlers for the session endpoints
- tasks.py: Background tasks for health monitoring and rate limiter maintenance
- headers.py: Security headers applied to every response

The application uses several middleware layers:
- Security headers middleware
- Statsd middleware for metrics collection
- Sentry middleware for error reporting
- Session gateway middleware for /api/protected/*

It provides the following main endpoints:
- Session endpoints (/api/auth/sync, /api/auth/activity, /api/auth/deactivate)
- Protected endpoints (/api/protected/*)
- Internal probes (/internal/alive, /internal/ready)
"""
