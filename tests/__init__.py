"""filegen test suite.

Most tests run the real components against temporary SQLite files built by
the fixtures in ``conftest.py``; pipeline tests inject crashes through a
hooked record source to exercise restart from checkpoint.
"""
