"""TalkShelf: a local mirror of TED channel videos served as per-user feeds.

The FastAPI application lives in :mod:`app.main`; consumer-side helpers live
in :mod:`app.client` and :mod:`app.feed`.
"""

__version__ = "1.0.0"
