"""
Dynamic Image Style test suite

Structure:
- unit/: parser, planner, validity cache, generator, proxy, templating, config
- integration/: HTTP surface through FastAPI's TestClient
- fixtures/: params files used by the config tests
"""
