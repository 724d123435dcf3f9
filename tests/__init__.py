"""Test suite for thotnet.

Test Structure:
- unit/: Unit tests for individual components
  - generation/: Idempotency key, content gate, fallback, cascade and pipeline
  - providers/: Provider adapters over mocked HTTP and SDK clients
  - storage/: Record and blob stores, schema-adaptive writer
  - config/, utils/, cli/: Ambient configuration, logging and CLI
- integration/: Pipeline runs against real adapters and durable stores
- conftest.py: Shared fixtures and scripted fakes
"""
