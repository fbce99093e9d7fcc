"""
Test package for agentbase.

- unit/: tests for individual components against an in-memory broker
- integration/: coordinators exchanging tasks over real pub/sub
- api/: metrics service routes and WebSocket handlers
- cli/: command line interface
"""
