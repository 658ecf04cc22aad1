"""
MissionFlow Test Suite
======================

Test Organization
-----------------
- tests/unit/          : Fast unit tests (no database)
- tests/unit/domain/   : Pure graph, transition, eligibility and statistics logic
- tests/integration/   : Services against a real SQLite file; PostgreSQL via
                         testcontainers when Docker is available

Testing Philosophy
------------------
- Unit tests: fast, isolated, test domain rules
- Integration tests: run the full service container, assert on state,
  ledger rows, notifications and published events
- Use pytest markers to categorize and selectively run tests
- Follow AAA pattern: Arrange, Act, Assert
"""
