"""
Shared, cross-cutting code for the API.

`core/` holds the small building blocks that multiple features use: DB
wiring, settings, logging and the clients for the external services
(Apify task runner, OpenAI completions). Keep feature-specific SQL and
business logic in the corresponding feature package (e.g. `ingestion/`).
"""
