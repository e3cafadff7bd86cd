"""CircleKeeper Test Suite.

Test organization mirrors circlekeeper/ structure:
    tests/
    ├── conftest.py          # Shared fixtures
    ├── test_core/           # Config, logging, exceptions
    ├── test_db/             # Models and SQLite adapter
    ├── test_engine/         # Scoring, ledger, capacity, review
    └── test_cli.py          # keeper.py entry point

Markers:
    - @pytest.mark.slow: Tests taking > 1 second
    - @pytest.mark.database: Tests requiring database
"""
