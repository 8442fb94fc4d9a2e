"""
Two-party messaging for the pet-adoption marketplace.

Server side: `store` (SQLAlchemy-backed conversation store), `api` (FastAPI
routes and the websocket change feed), `realtime` (event bus).
Client side: `gateway` (cache, queries, mutations), `realtime.sync`
(subscription manager and cache merges), `presentation` (view-models for the
conversation list, the thread, the floating widget and the inbox page).
"""
