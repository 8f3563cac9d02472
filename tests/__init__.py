"""
plugin-builder Test Suite
=========================

Test organization mirrors the source code structure:
    tests/
    ├── test_core/          → config, models
    ├── test_pipeline/      → fetch, extract, locate, detect, build, finalize, workspace
    ├── test_infrastructure/→ artifact storage backends
    ├── test_orchestration/ → state managers (memory + sql), build pipeline
    ├── test_integration/   → End-to-end release scenarios
    ├── test_facade.py      → PluginBuildService
    └── conftest.py         → Shared fixtures (fake toolchain, archive host)

Running Tests:
    pytest                          # Run all tests
    pytest tests/test_pipeline/     # Run only pipeline stage tests
    pytest -k sql                   # Run only SQL-backend state tests
"""
