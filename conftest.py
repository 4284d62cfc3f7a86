# Shared fixtures live in tests/conftest.py; register them for the app test packages.
pytest_plugins = ["tests.conftest"]
